"""
Webhook Signature Verification
---
Authenticates inbound processor webhooks before anything else touches them.

Two schemes:
- Timestamp HMAC (crypto processor): header `t=<unix_seconds>,v1=<hex hmac>`,
  HMAC-SHA256 over `"{t}.{raw_body}"`, rejected outside a fixed ±300s window.
- SDK-delegated (Stripe): `stripe.Webhook.construct_event` does the work and
  raises on any mismatch; we only convert that into "not authenticated".

Everything here is pure: no I/O, no state, clock injectable for tests.
"""
from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from typing import Any, Optional

import stripe

logger = logging.getLogger(__name__)

# Applies in both directions (stale replay and future-dated forgeries). Not configurable.
SIGNATURE_TOLERANCE_SECONDS = 300
MAX_TIMESTAMP_DIGITS = 12


def _as_bytes(value: str | bytes) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def parse_signature_header(signature_header: str | None) -> Optional[tuple[int, list[str]]]:
    """Split `t=...,v1=...` into (timestamp, [v1 signatures]). None if malformed."""
    if not signature_header:
        return None

    timestamp: Optional[int] = None
    signatures: list[str] = []
    for item in signature_header.split(","):
        key, sep, value = item.strip().partition("=")
        if not sep or not value:
            continue
        if key == "t":
            # ASCII digits only; str.isdigit also accepts superscripts and other scripts
            if len(value) > MAX_TIMESTAMP_DIGITS or not (value.isascii() and value.isdigit()):
                return None
            timestamp = int(value)
        elif key == "v1":
            signatures.append(value)

    if timestamp is None or not signatures:
        return None
    return timestamp, signatures


def compute_signature(raw_body: bytes, shared_secret: str | bytes, timestamp: int) -> str:
    """Hex HMAC-SHA256 of `"{timestamp}.{raw_body}"`."""
    signed_payload = f"{timestamp}.".encode("utf-8") + raw_body
    return hmac.new(_as_bytes(shared_secret), signed_payload, hashlib.sha256).hexdigest()


def build_signature_header(
    raw_body: bytes, shared_secret: str | bytes, timestamp: int | None = None
) -> str:
    """Produce a header exactly as the processor would send it."""
    ts = int(time.time()) if timestamp is None else timestamp
    return f"t={ts},v1={compute_signature(raw_body, shared_secret, ts)}"


def _signatures_match(expected_hex: str, supplied_hex: str) -> bool:
    try:
        supplied = bytes.fromhex(supplied_hex)
    except ValueError:
        return False
    expected = bytes.fromhex(expected_hex)
    if len(supplied) != len(expected):
        return False
    return hmac.compare_digest(expected, supplied)


def verify_timestamped_signature(
    raw_body: bytes,
    signature_header: str | None,
    shared_secret: str | bytes,
    now: float | None = None,
) -> bool:
    """True only for a well-formed, fresh, correctly signed delivery. Fails closed."""
    parsed = parse_signature_header(signature_header)
    if parsed is None:
        return False
    timestamp, supplied = parsed

    current = time.time() if now is None else now
    if abs(current - timestamp) > SIGNATURE_TOLERANCE_SECONDS:
        return False

    expected = compute_signature(raw_body, shared_secret, timestamp)
    return any(_signatures_match(expected, candidate) for candidate in supplied)


def construct_stripe_event(
    raw_body: bytes, signature_header: str, endpoint_secret: str
) -> Optional[dict[str, Any]]:
    """Verify through the Stripe SDK; return the event as a plain dict, or None.

    The SDK object is only used as a verdict. The body it vouched for is
    re-parsed so downstream code works on ordinary dicts.
    """
    try:
        stripe.Webhook.construct_event(
            raw_body, signature_header, endpoint_secret,
            tolerance=SIGNATURE_TOLERANCE_SECONDS,
        )
    except stripe.SignatureVerificationError as exc:
        logger.warning("Stripe signature rejected: %s (header=%r)", exc, signature_header)
        return None
    except ValueError as exc:
        logger.warning("Stripe payload could not be constructed: %s", exc)
        return None
    return json.loads(raw_body)
