"""Tests for webhook HMAC signatures and replay protection."""

import hashlib
import hmac

import pytest

from agent_remote.core.errors import SignatureError
from agent_remote.webhooks.signature import (
    generate_headers,
    generate_signature,
    verify_signature,
)

SECRET = "S"
BODY = '{"a":1}'
NOW_MS = 1_700_000_000_000


def _expected(body, ts):
    return hmac.new(SECRET.encode(), f"{ts}.{body}".encode(), hashlib.sha256).hexdigest()


class TestGenerate:
    def test_signs_timestamp_dot_body(self):
        assert generate_signature(BODY, SECRET, NOW_MS) == _expected(BODY, NOW_MS)

    def test_bytes_and_str_agree(self):
        assert generate_signature(BODY.encode(), SECRET, NOW_MS) == generate_signature(BODY, SECRET, NOW_MS)

    def test_headers(self):
        headers = generate_headers(BODY, SECRET, "session.completed", timestamp=NOW_MS)
        assert headers["X-Astrid-Signature"] == "sha256=" + _expected(BODY, NOW_MS)
        assert headers["X-Astrid-Timestamp"] == str(NOW_MS)
        assert headers["X-Astrid-Event"] == "session.completed"

    def test_custom_prefix(self):
        headers = generate_headers(BODY, SECRET, "task.assigned", prefix="X-Hook", timestamp=NOW_MS)
        assert set(headers) == {"X-Hook-Signature", "X-Hook-Timestamp", "X-Hook-Event"}


class TestVerify:
    def test_valid_signature(self):
        sig = generate_signature(BODY, SECRET, NOW_MS)
        verify_signature(BODY, sig, str(NOW_MS), SECRET, current_ms=NOW_MS)

    def test_prefixed_signature(self):
        sig = "sha256=" + generate_signature(BODY, SECRET, NOW_MS)
        verify_signature(BODY.encode(), sig, str(NOW_MS), SECRET, current_ms=NOW_MS)

    def test_tampered_body_rejected(self):
        sig = generate_signature(BODY, SECRET, NOW_MS)
        with pytest.raises(SignatureError, match="Invalid signature"):
            verify_signature('{"a":2}', sig, str(NOW_MS), SECRET, current_ms=NOW_MS)

    def test_wrong_secret_rejected(self):
        sig = generate_signature(BODY, "other", NOW_MS)
        with pytest.raises(SignatureError, match="Invalid signature"):
            verify_signature(BODY, sig, str(NOW_MS), SECRET, current_ms=NOW_MS)

    def test_signature_bound_to_timestamp(self):
        sig = generate_signature(BODY, SECRET, NOW_MS)
        with pytest.raises(SignatureError, match="Invalid signature"):
            verify_signature(BODY, sig, str(NOW_MS + 1), SECRET, current_ms=NOW_MS)

    def test_expired_timestamp(self):
        old = NOW_MS - 301_000
        sig = generate_signature(BODY, SECRET, old)
        with pytest.raises(SignatureError, match="Timestamp expired"):
            verify_signature(BODY, sig, str(old), SECRET, current_ms=NOW_MS)

    def test_within_window_accepted(self):
        recent = NOW_MS - 299_000
        sig = generate_signature(BODY, SECRET, recent)
        verify_signature(BODY, sig, str(recent), SECRET, current_ms=NOW_MS)

    def test_future_timestamp(self):
        future = NOW_MS + 61_000
        sig = generate_signature(BODY, SECRET, future)
        with pytest.raises(SignatureError, match="too far in future"):
            verify_signature(BODY, sig, str(future), SECRET, current_ms=NOW_MS)

    def test_small_clock_skew_accepted(self):
        ahead = NOW_MS + 30_000
        sig = generate_signature(BODY, SECRET, ahead)
        verify_signature(BODY, sig, str(ahead), SECRET, current_ms=NOW_MS)

    @pytest.mark.parametrize("signature,timestamp,secret,message", [
        (None, str(NOW_MS), SECRET, "Missing signature header"),
        ("abc", None, SECRET, "Missing timestamp header"),
        ("abc", str(NOW_MS), "", "Webhook secret not configured"),
        ("abc", "yesterday", SECRET, "Invalid timestamp"),
    ])
    def test_missing_or_malformed_inputs(self, signature, timestamp, secret, message):
        with pytest.raises(SignatureError, match=message):
            verify_signature(BODY, signature, timestamp, secret, current_ms=NOW_MS)

    def test_non_utf8_body_is_a_signature_mismatch(self):
        sig = generate_signature(BODY, SECRET, NOW_MS)
        with pytest.raises(SignatureError, match="Invalid signature"):
            verify_signature(b'{"a":"\xff"}', sig, str(NOW_MS), SECRET, current_ms=NOW_MS)

    def test_non_utf8_body_signed_as_bytes(self):
        raw = b'{"a":"\xff"}'
        sig = generate_signature(raw, SECRET, NOW_MS)
        verify_signature(raw, sig, str(NOW_MS), SECRET, current_ms=NOW_MS)
