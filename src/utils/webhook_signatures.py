"""
Webhook authenticity checks.

- Meta deliveries: HMAC-SHA256 of the raw body in X-Hub-Signature-256 ("sha256=<hex>").
- Shared tokens (subscription verify token, cron secret): constant-time equality.
"""
import hashlib
import hmac
import logging
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)

META_SIGNATURE_HEADER = "X-Hub-Signature-256"


class SignatureCheck(str, Enum):
    VALID = "valid"
    INVALID = "invalid"
    ABSENT = "absent"  # No signature header on the delivery
    UNVERIFIED = "unverified"  # Header present but no app secret configured


def validate_hmac_sha256(
    secret: str,
    signature: str,
    body: bytes,
    header_prefix: str = "sha256=",
) -> bool:
    """
    Validate an HMAC-SHA256 signature, with or without its "sha256=" prefix.
    Returns True if valid, False if invalid or either side is empty.
    """
    if not secret or not signature:
        return False

    sig = signature.strip()
    if sig.startswith(header_prefix):
        sig = sig[len(header_prefix):]

    try:
        expected = hmac.new(
            secret.encode("utf-8"),
            body,
            hashlib.sha256,
        ).hexdigest()
        return hmac.compare_digest(expected, sig.lower())
    except (TypeError, ValueError) as e:
        # compare_digest refuses non-ASCII str input
        logger.warning("HMAC-SHA256 validation error: %s", str(e))
        return False


def check_meta_signature(app_secret: str, signature: Optional[str], body: bytes) -> SignatureCheck:
    """Classify a Meta delivery's signature. Only INVALID should be refused."""
    if not signature:
        return SignatureCheck.ABSENT
    if not app_secret:
        return SignatureCheck.UNVERIFIED
    if validate_hmac_sha256(app_secret, signature, body):
        return SignatureCheck.VALID
    return SignatureCheck.INVALID


def tokens_match(expected: Optional[str], provided: Optional[str]) -> bool:
    """Constant-time comparison of shared secrets. Empty never matches."""
    if not expected or not provided:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))


def compute_payload_hash(body: bytes) -> str:
    """SHA-256 of the raw payload for the delivery audit trail."""
    return hashlib.sha256(body).hexdigest()
