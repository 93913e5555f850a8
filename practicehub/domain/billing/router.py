"""Billing router - payment processor webhook endpoint"""

import asyncio
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ...config import DODO_PAYMENTS_WEBHOOK_SECRET
from ...database import get_db
from ...exceptions import IdempotencyReplay
from ...rate_limiter import create_rate_limiter
from ...webhook_security import verify_processor_webhook
from .reconciler import BillingReconciler
from .schemas import WebhookAck, parse_processor_event

logger = logging.getLogger(__name__)

webhooks_router = APIRouter(prefix="/webhooks", tags=["Webhooks"])

limit_webhooks = create_rate_limiter(limit=300, window_seconds=60, key_prefix="payment_webhooks")


def get_webhook_secret() -> str:
    if not DODO_PAYMENTS_WEBHOOK_SECRET:
        logger.error("❌ DODO_PAYMENTS_WEBHOOK_SECRET not configured")
        raise HTTPException(status_code=500, detail="Webhook secret not configured")
    return DODO_PAYMENTS_WEBHOOK_SECRET


def get_billing_reconciler(db: Session = Depends(get_db)) -> BillingReconciler:
    """Dependency injection for BillingReconciler"""
    return BillingReconciler(db)


@webhooks_router.post("/payments", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    secret: str = Depends(get_webhook_secret),
    reconciler: BillingReconciler = Depends(get_billing_reconciler),
    _: None = Depends(limit_webhooks),
):
    """
    Verify, de-duplicate and apply a processor event. Replays are
    acknowledged with 200 so the processor stops redelivering.
    """
    webhook_id, raw_body = await verify_processor_webhook(request, secret)

    try:
        payload = json.loads(raw_body)
    except json.JSONDecodeError as e:
        logger.error(f"❌ Webhook {webhook_id} body is not valid JSON")
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from e
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    event = parse_processor_event(webhook_id, payload)
    logger.info(f"📥 Processing {event.event_type} ({event.kind.value}) event {webhook_id}")

    try:
        record = await asyncio.to_thread(reconciler.reconcile, event)
    except IdempotencyReplay:
        return WebhookAck(status="already_processed", event_id=webhook_id)

    return WebhookAck(status=record.status, event_id=webhook_id)
