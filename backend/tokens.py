"""
Signed, typed, expiring QR tokens.

Format: ``<base64url(json payload)>.<base64url(hmac-sha256)>``. Every token
carries a random nonce so two tokens for the same subject and event are never
byte-identical.
"""

import binascii
import json
import secrets
import time
from typing import Literal, TypedDict

from backend import config
from backend.errors import MissingToken, TokenExpired, TokenMalformed, TokenTypeMismatch
from backend.signing import b64url_decode, b64url_encode, sign, signature_matches

TokenType = Literal["student", "stall"]
TOKEN_TYPES: set[str] = {"student", "stall"}


class QrTokenPayload(TypedDict):
    sub: str
    evt: str
    typ: TokenType
    nonce: str
    iat: int
    exp: int


def sign_token(
    subject_id: str,
    event_id: str,
    token_type: TokenType,
    ttl_seconds: int,
    *,
    now: int | None = None,
) -> str:
    if token_type not in TOKEN_TYPES:
        raise ValueError(f"Unknown token type: {token_type!r}")
    issued_at = int(time.time()) if now is None else int(now)
    payload: QrTokenPayload = {
        "sub": str(subject_id).strip(),
        "evt": str(event_id).strip(),
        "typ": token_type,
        "nonce": secrets.token_hex(16),
        "iat": issued_at,
        "exp": issued_at + int(ttl_seconds),
    }
    payload_json = json.dumps(payload, separators=(",", ":"), sort_keys=True)
    payload_b64 = b64url_encode(payload_json.encode("utf-8"))
    return f"{payload_b64}.{sign(payload_b64, config.QR_SECRET)}"


def verify_token(token: str | None, expected_type: TokenType, *, now: int | None = None) -> QrTokenPayload:
    """
    Verify signature, structure, expiry and type, in that order.

    Raises MissingToken, TokenMalformed, TokenExpired or TokenTypeMismatch.
    """
    if not isinstance(token, str) or not token.strip():
        raise MissingToken()

    token = token.strip()
    payload_b64, sep, signature = token.partition(".")
    if not sep or not payload_b64 or not signature:
        raise TokenMalformed("Invalid QR code format.")

    try:
        valid = signature_matches(payload_b64, signature, config.QR_SECRET)
    except UnicodeEncodeError:
        raise TokenMalformed("Invalid QR code format.")
    if not valid:
        raise TokenMalformed("Invalid QR code signature.")

    try:
        payload = json.loads(b64url_decode(payload_b64).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError):
        raise TokenMalformed("Invalid QR code payload.")

    if not isinstance(payload, dict):
        raise TokenMalformed("Invalid QR code payload.")

    sub = payload.get("sub")
    evt = payload.get("evt")
    iat = payload.get("iat")
    exp = payload.get("exp")
    if not isinstance(sub, str) or not sub.strip():
        raise TokenMalformed("QR code is missing its subject.")
    if not isinstance(evt, str) or not evt.strip():
        raise TokenMalformed("QR code is missing its event.")
    if not isinstance(iat, int) or not isinstance(exp, int) or exp < iat:
        raise TokenMalformed("QR code has an invalid validity window.")
    if not isinstance(payload.get("nonce"), str):
        raise TokenMalformed("QR code is missing its nonce.")

    current = int(time.time()) if now is None else int(now)
    if current > exp:
        raise TokenExpired()

    if payload.get("typ") != expected_type:
        raise TokenTypeMismatch(expected_type, payload.get("typ"))

    return QrTokenPayload(
        sub=sub.strip(),
        evt=evt.strip(),
        typ=expected_type,
        nonce=payload["nonce"],
        iat=iat,
        exp=exp,
    )


def issue_student_token(student_id: str, event_id: str, *, now: int | None = None) -> tuple[str, QrTokenPayload]:
    token = sign_token(student_id, event_id, "student", config.STUDENT_TOKEN_TTL_SECONDS, now=now)
    return token, verify_token(token, "student", now=now)


def issue_stall_token(stall_id: str, event_id: str, *, now: int | None = None) -> tuple[str, str]:
    """Return the stall token and the JSON document printed on the stall's QR."""
    token = sign_token(stall_id, event_id, "stall", config.STALL_TOKEN_TTL_SECONDS, now=now)
    qr_data = json.dumps(
        {"stallId": str(stall_id), "eventId": str(event_id), "type": "stall", "token": token},
        separators=(",", ":"),
    )
    return token, qr_data


def extract_stall_token(raw: str | None) -> str | None:
    """Accept either a bare stall token or the JSON document printed on the QR."""
    if not isinstance(raw, str):
        return raw
    candidate = raw.strip()
    if not candidate.startswith("{"):
        return candidate
    try:
        doc = json.loads(candidate)
    except ValueError:
        raise TokenMalformed("Invalid stall QR code.")
    token = doc.get("token") if isinstance(doc, dict) else None
    if not isinstance(token, str):
        raise TokenMalformed("Invalid stall QR code.")
    return token
