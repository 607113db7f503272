"""Webhook signature verification.

GitHub signs every delivery with the shared webhook secret and sends the
result as ``<algorithm>=<hexdigest>`` in ``X-Hub-Signature-256`` (and the
legacy ``X-Hub-Signature`` header for sha1). The digest must be computed
over the exact bytes received: a parsed and re-serialized body hashes
differently.

A missing header is handled as ``"sha1="``, an empty digest, which can
never match a computed digest. Absence of the header is therefore a
reject, never a bypass.
"""

import hashlib
import hmac
from typing import Mapping, Optional

import structlog

logger = structlog.get_logger(__name__)

SIGNATURE_HEADER_256 = "X-Hub-Signature-256"
SIGNATURE_HEADER = "X-Hub-Signature"
MISSING_SIGNATURE = "sha1="

SUPPORTED_ALGORITHMS = {
    "sha1": hashlib.sha1,
    "sha256": hashlib.sha256,
    "sha512": hashlib.sha512,
}


def compute_signature(body: bytes, secret: str, algorithm: str = "sha256") -> str:
    """Compute the hex HMAC digest of a webhook body.

    Args:
        body: Raw request body as bytes.
        secret: Shared webhook secret.
        algorithm: One of the supported digest names.

    Returns:
        Hexadecimal digest string.

    Raises:
        ValueError: If the algorithm is not supported.
    """
    digestmod = SUPPORTED_ALGORITHMS.get(algorithm.lower())
    if digestmod is None:
        raise ValueError(f"Unsupported signature algorithm: {algorithm}")
    return hmac.new(secret.encode("utf-8"), body, digestmod).hexdigest()


def select_signature_header(headers: Mapping[str, str]) -> str:
    """Pick the strongest signature header present on a request.

    Args:
        headers: Case-insensitive request headers.

    Returns:
        The header value, or ``"sha1="`` when neither header is present.
    """
    return (
        headers.get(SIGNATURE_HEADER_256)
        or headers.get(SIGNATURE_HEADER)
        or MISSING_SIGNATURE
    )


def verify_signature(body: bytes, signature_header: Optional[str], secret: str) -> bool:
    """Verify a webhook signature header against the raw body.

    Args:
        body: Raw request body as bytes, exactly as received.
        signature_header: ``<algorithm>=<hexdigest>`` header value. None is
            treated as ``"sha1="``.
        secret: Shared webhook secret.

    Returns:
        True if the digest matches, False otherwise.
    """
    header = signature_header or MISSING_SIGNATURE
    algorithm, separator, their_digest = header.partition("=")

    if not separator:
        logger.warning("webhook_signature_malformed")
        return False

    try:
        our_digest = compute_signature(body, secret, algorithm)
    except ValueError:
        logger.warning("webhook_signature_unsupported_algorithm", algorithm=algorithm)
        return False

    is_valid = hmac.compare_digest(their_digest.encode("utf-8"), our_digest.encode("utf-8"))

    if not is_valid:
        logger.warning("webhook_signature_mismatch", algorithm=algorithm)
    else:
        logger.debug("webhook_signature_verified", algorithm=algorithm)

    return is_valid


class SignatureVerifier:
    """Verifies webhook deliveries against one shared secret."""

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("Webhook secret cannot be empty")
        self._secret = secret

    def verify(self, body: bytes, signature_header: Optional[str]) -> bool:
        return verify_signature(body, signature_header, self._secret)
