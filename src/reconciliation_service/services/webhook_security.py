"""HMAC-SHA256 signature verification for inbound webhooks.

The catalog signs the raw body and sends the base64 digest; the market-price
API sends the hex digest, optionally prefixed with ``sha256=``. Verification
is mandatory: an unset secret rejects every request.
"""

import base64
import hashlib
import hmac
from typing import Literal

import structlog

from reconciliation_service.exceptions import SignatureVerificationError

logger = structlog.get_logger()

Encoding = Literal["base64", "hex"]


def generate_signature(payload: bytes, secret: str, encoding: Encoding = "base64") -> str:
    """HMAC-SHA256 of ``payload`` in the given encoding (also used by tests)."""
    digest = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).digest()
    if encoding == "hex":
        return digest.hex()
    return base64.b64encode(digest).decode("ascii")


def extract_signature(header_value: str | None) -> str | None:
    """Strip an optional ``sha256=`` prefix; ``None`` for empty headers."""
    if not header_value:
        return None
    value = header_value.strip()
    if value.lower().startswith("sha256="):
        value = value[len("sha256="):]
    return value or None


def verify_signature(
    payload: bytes, signature: str | None, secret: str, encoding: Encoding = "base64"
) -> bool:
    """Constant-time comparison of ``signature`` against the expected digest."""
    signature = extract_signature(signature)
    if not secret:
        logger.warning("Webhook secret not configured, rejecting request")
        return False
    if not signature:
        logger.warning("Webhook signature missing")
        return False

    expected = generate_signature(payload, secret, encoding)
    provided = signature.lower() if encoding == "hex" else signature
    is_valid = hmac.compare_digest(expected.encode("ascii"), provided.encode("ascii", "replace"))
    if not is_valid:
        logger.warning(
            "Webhook signature verification failed",
            expected_prefix=expected[:8],
            provided_prefix=signature[:8],
        )
    return is_valid


def require_valid_signature(
    payload: bytes, signature: str | None, secret: str, encoding: Encoding = "base64"
) -> None:
    """Raise :class:`SignatureVerificationError` unless the signature matches."""
    if not verify_signature(payload, signature, secret, encoding):
        raise SignatureVerificationError("Invalid webhook signature")
