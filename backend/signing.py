"""HMAC-SHA256 helpers shared by the QR token codec and the session tokens."""

import base64
import hashlib
import hmac


def b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def b64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def sign(payload_b64: str, secret: str) -> str:
    digest = hmac.new(
        secret.encode("utf-8"),
        payload_b64.encode("ascii"),
        hashlib.sha256,
    ).digest()
    return b64url_encode(digest)


def signature_matches(payload_b64: str, signature: str, secret: str) -> bool:
    """Constant-time check. Raises UnicodeEncodeError for a non-ASCII payload."""
    expected = sign(payload_b64, secret)
    return hmac.compare_digest(signature.encode("utf-8"), expected.encode("ascii"))
