"""HMAC-SHA256 webhook signatures with timestamp replay protection.

The signed string is ``"{timestamp}.{raw_body}"`` where ``timestamp`` is
milliseconds since the epoch. Signatures are hex digests, optionally
prefixed with ``sha256=``.
"""

import hashlib
import hmac
import time
from typing import Dict, Optional, Union

from ..core.errors import SignatureError

SIGNATURE_PREFIX = "sha256="


def now_ms() -> int:
    return int(time.time() * 1000)


def _as_bytes(payload: Union[str, bytes]) -> bytes:
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return payload


def generate_signature(payload: Union[str, bytes], secret: str, timestamp: Union[int, str]) -> str:
    """Hex HMAC-SHA256 of ``"{timestamp}.{payload}"``."""
    message = f"{timestamp}.".encode("utf-8") + _as_bytes(payload)
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def generate_headers(
    payload: Union[str, bytes],
    secret: str,
    event: str,
    prefix: str = "X-Astrid",
    timestamp: Optional[int] = None,
) -> Dict[str, str]:
    """Signature, timestamp and event headers for an outbound request."""
    ts = timestamp if timestamp is not None else now_ms()
    return {
        f"{prefix}-Signature": SIGNATURE_PREFIX + generate_signature(payload, secret, ts),
        f"{prefix}-Timestamp": str(ts),
        f"{prefix}-Event": event,
    }


def verify_signature(
    raw_body: Union[str, bytes],
    signature: Optional[str],
    timestamp: Optional[str],
    secret: str,
    max_age_seconds: int = 300,
    max_future_skew_seconds: int = 60,
    current_ms: Optional[int] = None,
) -> None:
    """
    Verify an inbound request.

    Raises:
        SignatureError: If headers are missing, the timestamp is outside the
            allowed window or the signature does not match
    """
    if not signature:
        raise SignatureError("Missing signature header")
    if not timestamp:
        raise SignatureError("Missing timestamp header")
    if not secret:
        raise SignatureError("Webhook secret not configured")

    try:
        ts = int(timestamp)
    except (TypeError, ValueError):
        raise SignatureError("Invalid timestamp")

    now = current_ms if current_ms is not None else now_ms()
    age_ms = now - ts
    if age_ms > max_age_seconds * 1000:
        raise SignatureError("Timestamp expired")
    if age_ms < -max_future_skew_seconds * 1000:
        raise SignatureError("Timestamp too far in future")

    provided = signature[len(SIGNATURE_PREFIX):] if signature.startswith(SIGNATURE_PREFIX) else signature
    expected = generate_signature(raw_body, secret, timestamp)
    if not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise SignatureError("Invalid signature")
