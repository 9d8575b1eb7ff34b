"""
Gateway signature helpers

VNPay signs callback parameters with HMAC-SHA512 over the url-encoded,
key-sorted query string. Comparisons are constant-time.
"""

import hashlib
import hmac
import logging

logger = logging.getLogger(__name__)


def constant_time_compare(a: str, b: str) -> bool:
    """
    Compare two strings in constant time to prevent timing attacks.
    Uses hmac.compare_digest which is designed for this purpose.
    """
    if not a or not b:
        return False
    return hmac.compare_digest(a, b)


def compute_hmac_sha512(secret: str, payload: str) -> str:
    """Compute HMAC-SHA512 signature of payload as lowercase hex"""
    return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha512).hexdigest()


def verify_hmac_sha512(secret: str, payload: str, signature: str) -> bool:
    """Check a hex signature (any case) against the expected HMAC-SHA512"""
    expected = compute_hmac_sha512(secret, payload)
    is_valid = constant_time_compare(expected, (signature or "").lower())
    if not is_valid:
        logger.warning("🚫 Gateway signature mismatch")
    return is_valid
