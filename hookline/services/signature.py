"""
Webhook signatures.

Every callback carries two headers:

    X-Webhook-Timestamp: unix time in milliseconds, as a string
    X-Webhook-Signature: hex HMAC-SHA256 of "{timestamp}.{raw body}"

The signature header is omitted when the destination has no secret.

Receivers verify a callback by recomputing the HMAC over the timestamp
header, a literal ".", and the raw request body bytes with their shared
secret, comparing in constant time, and rejecting requests whose timestamp
is outside their clock-skew window (replay protection). The same delivery
can arrive more than once; receivers should deduplicate on the
X-Webhook-Delivery-Id header, which is stable across retries.
"""
import hashlib
import hmac
import time


# Default receiver clock-skew window
DEFAULT_TOLERANCE_SECONDS = 300


def _as_bytes(payload: bytes | str) -> bytes:
    return payload.encode("utf-8") if isinstance(payload, str) else payload


def sign(secret: str, timestamp: str, payload: bytes | str) -> str:
    """
    Compute the HMAC-SHA256 signature for a webhook payload.

    Args:
        secret: Shared secret for the destination
        timestamp: Unix milliseconds as sent in X-Webhook-Timestamp
        payload: Raw request body

    Returns:
        Hex digest

    Raises:
        ValueError: If the secret is empty
    """
    if not secret:
        raise ValueError("Webhook signing secret must not be empty")

    message = timestamp.encode("utf-8") + b"." + _as_bytes(payload)
    return hmac.new(
        secret.encode("utf-8"),
        message,
        hashlib.sha256
    ).hexdigest()


def verify_signature(
    secret: str,
    timestamp: str,
    payload: bytes | str,
    signature: str,
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
    now: float | None = None,
) -> bool:
    """
    Verify a received webhook the way an integrator should.

    Returns False on a signature mismatch, a malformed timestamp, or a
    timestamp more than tolerance_seconds away from now (seconds since epoch).
    """
    try:
        sent_at = int(timestamp) / 1000
    except (TypeError, ValueError):
        return False

    current = time.time() if now is None else now
    if abs(current - sent_at) > tolerance_seconds:
        return False

    expected = sign(secret, timestamp, payload)
    return hmac.compare_digest(expected, signature)
