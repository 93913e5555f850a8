"""
Webhook Security Module

Standard Webhooks signature verification for payment-processor callbacks:
- Constant-time signature comparison
- Timestamp tolerance window against replayed deliveries
- Verification against the raw request body, before any parsing
"""

import base64
import binascii
import hashlib
import hmac
import logging
import time
from typing import Optional

from fastapi import HTTPException, Request

logger = logging.getLogger(__name__)

# Maximum age of webhook in seconds (5 minutes)
MAX_WEBHOOK_AGE_SECONDS = 300


class WebhookSignatureError(Exception):
    """Raised when webhook signature verification fails"""


def constant_time_compare(a: str, b: str) -> bool:
    if not a or not b:
        return False
    return hmac.compare_digest(a, b)


def extract_signing_key(secret: str) -> bytes:
    """
    Signing key bytes from a "whsec_<base64>" secret.

    Unprefixed secrets are base64-decoded when possible, otherwise used as raw UTF-8.
    """
    try:
        if secret.startswith("whsec_"):
            return base64.b64decode(secret[6:])
        return base64.b64decode(secret, validate=True)
    except (binascii.Error, ValueError):
        return secret.encode("utf-8")


def compute_signature(secret: str, webhook_id: str, timestamp: str, body: bytes) -> str:
    """Base64 HMAC-SHA256 over "webhook-id.webhook-timestamp.body" """
    signed_message = b".".join([webhook_id.encode("utf-8"), timestamp.encode("utf-8"), body])
    digest = hmac.new(extract_signing_key(secret), signed_message, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


def verify_timestamp(
    timestamp: Optional[str], max_age: int = MAX_WEBHOOK_AGE_SECONDS, now: Optional[float] = None
) -> bool:
    """Reject missing, malformed, or out-of-window timestamps"""
    if not timestamp:
        return False
    try:
        age = abs(int(now if now is not None else time.time()) - int(timestamp))
    except (ValueError, TypeError):
        logger.warning(f"🚫 Invalid webhook timestamp format: {timestamp}")
        return False
    if age > max_age:
        logger.warning(f"🚫 Webhook timestamp outside tolerance: {age}s (max: {max_age}s)")
        return False
    return True


def verify_signature(
    secret: str,
    webhook_id: str,
    timestamp: str,
    signature_header: str,
    body: bytes,
    now: Optional[float] = None,
) -> None:
    """
    Verify a Standard Webhooks delivery.

    The signature header may carry several space-separated "v1,<sig>" entries
    (key rotation); any match is accepted.

    Raises:
        WebhookSignatureError: on any verification failure
    """
    if not secret:
        raise WebhookSignatureError("Webhook secret not configured")
    if not webhook_id or not signature_header:
        raise WebhookSignatureError("Missing webhook-id or webhook-signature header")
    if not verify_timestamp(timestamp, now=now):
        raise WebhookSignatureError("Webhook timestamp expired or invalid")

    expected = compute_signature(secret, webhook_id, timestamp, body)
    candidates = [
        entry[3:] for entry in signature_header.split() if entry.startswith("v1,")
    ]
    if not candidates:
        raise WebhookSignatureError("Invalid signature format")
    if not any(constant_time_compare(expected, candidate) for candidate in candidates):
        raise WebhookSignatureError("Signature mismatch")


async def verify_processor_webhook(request: Request, secret: str) -> tuple[str, bytes]:
    """
    Verify an incoming processor webhook.

    Returns:
        Tuple of (webhook_id, raw_body)

    Raises:
        HTTPException 401 when verification fails
    """
    # Raw body BEFORE any parsing - the signature covers exact bytes
    raw_body = await request.body()
    webhook_id = request.headers.get("webhook-id", "")
    timestamp = request.headers.get("webhook-timestamp", "")
    signature_header = request.headers.get("webhook-signature", "")

    logger.info(f"📥 Payment webhook received: id={webhook_id or 'unknown'}")

    try:
        verify_signature(secret, webhook_id, timestamp, signature_header, raw_body)
    except WebhookSignatureError as e:
        logger.error(f"❌ Webhook verification failed for {webhook_id or 'unknown'}: {e}")
        raise HTTPException(status_code=401, detail=str(e)) from e

    logger.info(f"✅ Webhook signature verified: {webhook_id}")
    return webhook_id, raw_body
