"""Billing domain schemas - processor webhook events"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, field_validator

from ...shared.timezones import ensure_utc


class ProcessorEventKind(str, Enum):
    RENEWAL_SUCCEEDED = "renewal_succeeded"
    PAYMENT_FAILED = "payment_failed"
    SUBSCRIPTION_CANCELED = "subscription_canceled"
    IGNORED = "ignored"


# Processor event type -> what it means for a membership
EVENT_KINDS = {
    "subscription.active": ProcessorEventKind.RENEWAL_SUCCEEDED,
    "subscription.renewed": ProcessorEventKind.RENEWAL_SUCCEEDED,
    "payment.failed": ProcessorEventKind.PAYMENT_FAILED,
    "subscription.on_hold": ProcessorEventKind.PAYMENT_FAILED,
    "subscription.failed": ProcessorEventKind.PAYMENT_FAILED,
    "subscription.cancelled": ProcessorEventKind.SUBSCRIPTION_CANCELED,
    "subscription.expired": ProcessorEventKind.SUBSCRIPTION_CANCELED,
}


class ProcessorEvent(BaseModel):
    """A verified processor webhook reduced to the fields the reconciler uses"""

    event_id: str
    event_type: str
    kind: ProcessorEventKind
    subscription_id: Optional[str] = None
    customer_id: Optional[str] = None
    membership_id: Optional[int] = None
    occurred_at: Optional[datetime] = None
    next_billing_date: Optional[datetime] = None
    amount: Optional[float] = None
    currency: Optional[str] = None
    raw: dict[str, Any] = {}

    @field_validator("occurred_at", "next_billing_date")
    @classmethod
    def normalize_times(cls, v):
        return ensure_utc(v)


def _minor_units_to_amount(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return round(int(value) / 100, 2)
    except (TypeError, ValueError):
        return None


def _membership_id_from(metadata: dict) -> Optional[int]:
    value = (metadata or {}).get("membership_id")
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def parse_processor_event(event_id: str, payload: dict) -> ProcessorEvent:
    """
    Build a ProcessorEvent from a Dodo Payments webhook body:
    {"type": ..., "timestamp": ..., "data": {"subscription_id", "customer", "metadata", ...}}

    Unknown event types parse as IGNORED rather than failing.
    """
    event_type = str(payload.get("type") or "")
    data = payload.get("data") or {}
    customer = data.get("customer") or {}
    amount = data.get("recurring_pre_tax_amount")
    if amount is None:
        amount = data.get("total_amount")

    return ProcessorEvent(
        event_id=event_id,
        event_type=event_type,
        kind=EVENT_KINDS.get(event_type, ProcessorEventKind.IGNORED),
        subscription_id=data.get("subscription_id"),
        customer_id=customer.get("customer_id"),
        membership_id=_membership_id_from(data.get("metadata") or {}),
        occurred_at=payload.get("timestamp"),
        next_billing_date=data.get("next_billing_date"),
        amount=_minor_units_to_amount(amount),
        currency=data.get("currency"),
        raw=payload,
    )


class WebhookAck(BaseModel):
    status: str
    event_id: str
    detail: Optional[str] = None
