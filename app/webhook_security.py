"""
Webhook Security Module

Signature verification for payment provider webhooks:
- Constant-time signature comparison
- Timestamp validation against replays
- Detailed logging for security auditing
"""

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

    pass


def constant_time_compare(a: str, b: str) -> bool:
    """
    Compare two strings in constant time to prevent timing attacks.
    Uses hmac.compare_digest which is designed for this purpose.
    """
    if not a or not b:
        return False
    return hmac.compare_digest(a, b)


def compute_hmac_sha256(secret: str, payload: bytes) -> str:
    """Compute HMAC-SHA256 signature of payload"""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_timestamp(
    timestamp: Optional[str], max_age: int = MAX_WEBHOOK_AGE_SECONDS, now: Optional[float] = None
) -> bool:
    """
    Verify webhook timestamp is within acceptable range.
    Prevents replay attacks by rejecting old webhooks.

    Args:
        timestamp: Unix timestamp as string, in seconds or milliseconds
        max_age: Maximum age in seconds
        now: Current Unix time, defaults to time.time()

    Returns:
        True if timestamp is valid, False otherwise
    """
    if not timestamp:
        return False

    try:
        webhook_time = int(timestamp)
        if webhook_time > 10**12:
            webhook_time //= 1000
        current_time = int(now if now is not None else time.time())
        age = abs(current_time - webhook_time)

        if age > max_age:
            logger.warning(f"🚫 Webhook timestamp too old: {age}s (max: {max_age}s)")
            return False

        return True
    except (ValueError, TypeError):
        logger.warning(f"🚫 Invalid webhook timestamp format: {timestamp}")
        return False


def parse_signature_header(header: Optional[str]) -> dict:
    """Split 'ts=...,v1=...' into its parts"""
    parts = {}
    for item in (header or "").split(","):
        key, sep, value = item.strip().partition("=")
        if sep:
            parts[key.strip()] = value.strip()
    return parts


def mercadopago_manifest(data_id: Optional[str], request_id: Optional[str], ts: str) -> str:
    """Signed template: id:[data.id];request-id:[x-request-id];ts:[ts];"""
    manifest = ""
    if data_id:
        # Alphanumeric IDs are signed in lowercase
        manifest += f"id:{data_id.lower() if data_id.isalnum() else data_id};"
    if request_id:
        manifest += f"request-id:{request_id};"
    return manifest + f"ts:{ts};"


def verify_mercadopago_signature(
    signature_header: Optional[str],
    request_id: Optional[str],
    data_id: Optional[str],
    secret: str,
    now: Optional[float] = None,
) -> None:
    """
    Verify a MercadoPago x-signature header.

    Raises:
        WebhookSignatureError: Missing, stale or mismatching signature
    """
    parts = parse_signature_header(signature_header)
    ts, received = parts.get("ts"), parts.get("v1")
    if not ts or not received:
        raise WebhookSignatureError("Missing ts or v1 in x-signature header")
    if not verify_timestamp(ts, now=now):
        raise WebhookSignatureError("Webhook timestamp outside the accepted window")

    expected = compute_hmac_sha256(secret, mercadopago_manifest(data_id, request_id, ts).encode("utf-8"))
    if not constant_time_compare(received, expected):
        raise WebhookSignatureError("Signature mismatch")


async def verify_mercadopago_webhook(request: Request, secret: Optional[str], data_id: Optional[str]) -> None:
    """
    Verify a MercadoPago webhook request, raising HTTPException(401) on failure.
    Verification is skipped when no secret is configured.
    """
    if not secret:
        logger.warning("⚠️ MERCADOPAGO_WEBHOOK_SECRET not set, accepting unsigned webhook")
        return

    try:
        verify_mercadopago_signature(
            request.headers.get("x-signature"),
            request.headers.get("x-request-id"),
            data_id,
            secret,
        )
    except WebhookSignatureError as e:
        logger.warning(f"🚫 MercadoPago webhook rejected: {e}")
        raise HTTPException(status_code=401, detail="Invalid webhook signature") from e

    logger.info("✅ MercadoPago webhook signature verified")
