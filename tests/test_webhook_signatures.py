"""Tests for webhook signature verification — timestamp HMAC and Stripe SDK."""
from __future__ import annotations

import time

import pytest

from src.services.webhook_signatures import (
    SIGNATURE_TOLERANCE_SECONDS,
    build_signature_header,
    compute_signature,
    construct_stripe_event,
    parse_signature_header,
    verify_timestamped_signature,
)

SECRET = "coinpay_secret"
BODY = b'{"id":"evt_1","type":"payment.confirmed","data":{"payment_id":"pay_1"}}'
NOW = 1_700_000_000


# ── Header parsing ────────────────────────────────────────────────────────────

class TestParseHeader:
    def test_parses_timestamp_and_signature(self):
        assert parse_signature_header("t=123,v1=abcd") == (123, ["abcd"])

    def test_collects_multiple_v1(self):
        assert parse_signature_header("t=1, v1=aa, v1=bb") == (1, ["aa", "bb"])

    def test_ignores_unknown_keys(self):
        assert parse_signature_header("t=5,v0=zz,v1=aa") == (5, ["aa"])

    @pytest.mark.parametrize("header", [
        None,
        "",
        "garbage",
        "t=123",
        "v1=abcd",
        "t=abc,v1=abcd",
        "t=-5,v1=abcd",
        "t=,v1=",
        "t=\u00b2,v1=abcd",
        "t=\u0661\u0662,v1=abcd",
        "t=" + "1" * 5000 + ",v1=abcd",
    ])
    def test_malformed_returns_none(self, header):
        assert parse_signature_header(header) is None


# ── Timestamp HMAC ────────────────────────────────────────────────────────────

class TestTimestampedSignature:
    def test_built_header_verifies(self):
        header = build_signature_header(BODY, SECRET, timestamp=NOW)
        assert verify_timestamped_signature(BODY, header, SECRET, now=NOW)

    def test_default_timestamp_is_now(self):
        header = build_signature_header(BODY, SECRET)
        assert verify_timestamped_signature(BODY, header, SECRET)

    def test_wrong_secret_rejected(self):
        header = build_signature_header(BODY, "other_secret", timestamp=NOW)
        assert not verify_timestamped_signature(BODY, header, SECRET, now=NOW)

    def test_tampered_body_rejected(self):
        header = build_signature_header(BODY, SECRET, timestamp=NOW)
        assert not verify_timestamped_signature(BODY + b" ", header, SECRET, now=NOW)

    def test_signature_covers_timestamp(self):
        sig = compute_signature(BODY, SECRET, NOW)
        header = f"t={NOW + 1},v1={sig}"
        assert not verify_timestamped_signature(BODY, header, SECRET, now=NOW)

    @pytest.mark.parametrize("timestamp", ["\u00b2", "\u0661\u0662", "1" * 5000])
    def test_unparseable_timestamp_fails_closed(self, timestamp):
        sig = compute_signature(BODY, SECRET, NOW)
        assert not verify_timestamped_signature(BODY, f"t={timestamp},v1={sig}", SECRET, now=NOW)

    @pytest.mark.parametrize("skew", [-299, 0, 299, SIGNATURE_TOLERANCE_SECONDS, -SIGNATURE_TOLERANCE_SECONDS])
    def test_inside_window_accepted(self, skew):
        header = build_signature_header(BODY, SECRET, timestamp=NOW + skew)
        assert verify_timestamped_signature(BODY, header, SECRET, now=NOW)

    @pytest.mark.parametrize("skew", [-301, 301, -3600, 86400])
    def test_outside_window_rejected(self, skew):
        """Stale replays and future-dated headers both fail."""
        header = build_signature_header(BODY, SECRET, timestamp=NOW + skew)
        assert not verify_timestamped_signature(BODY, header, SECRET, now=NOW)

    def test_any_matching_v1_is_enough(self):
        sig = compute_signature(BODY, SECRET, NOW)
        header = f"t={NOW},v1={'0' * 64},v1={sig}"
        assert verify_timestamped_signature(BODY, header, SECRET, now=NOW)

    def test_non_hex_signature_rejected(self):
        assert not verify_timestamped_signature(BODY, f"t={NOW},v1=not-hex!", SECRET, now=NOW)

    def test_truncated_signature_rejected(self):
        sig = compute_signature(BODY, SECRET, NOW)
        assert not verify_timestamped_signature(BODY, f"t={NOW},v1={sig[:32]}", SECRET, now=NOW)

    def test_missing_header_rejected(self):
        assert not verify_timestamped_signature(BODY, None, SECRET, now=NOW)

    def test_bytes_secret_matches_str_secret(self):
        header = build_signature_header(BODY, SECRET.encode(), timestamp=NOW)
        assert verify_timestamped_signature(BODY, header, SECRET, now=NOW)


# ── Stripe ────────────────────────────────────────────────────────────────────

class TestStripeConstructEvent:
    STRIPE_SECRET = "whsec_test123"
    PAYLOAD = b'{"id":"evt_s1","object":"event","type":"invoice.payment_failed","data":{"object":{}}}'

    def test_valid_signature_returns_plain_dict(self):
        header = build_signature_header(self.PAYLOAD, self.STRIPE_SECRET)
        event = construct_stripe_event(self.PAYLOAD, header, self.STRIPE_SECRET)
        assert isinstance(event, dict)
        assert event["id"] == "evt_s1"
        assert event["type"] == "invoice.payment_failed"

    def test_wrong_secret_returns_none(self):
        header = build_signature_header(self.PAYLOAD, "whsec_other")
        assert construct_stripe_event(self.PAYLOAD, header, self.STRIPE_SECRET) is None

    def test_stale_timestamp_returns_none(self):
        header = build_signature_header(self.PAYLOAD, self.STRIPE_SECRET, timestamp=int(time.time()) - 600)
        assert construct_stripe_event(self.PAYLOAD, header, self.STRIPE_SECRET) is None

    def test_garbage_header_returns_none(self):
        assert construct_stripe_event(self.PAYLOAD, "t=123,v1=bad", self.STRIPE_SECRET) is None

    def test_signed_non_json_returns_none(self):
        body = b"not json"
        header = build_signature_header(body, self.STRIPE_SECRET)
        assert construct_stripe_event(body, header, self.STRIPE_SECRET) is None
