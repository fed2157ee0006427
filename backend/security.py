import binascii
import json
import time
from typing import Any, Callable

from fastapi import Depends, Header, HTTPException

from backend import config
from backend.errors import ActorNotAllowed
from backend.signing import b64url_decode, b64url_encode, sign, signature_matches
from database.db import read_only, resolve_actor
from database.models import Actor, ActorKind

ACTOR_KINDS: set[str] = {"user", "volunteer"}


def issue_session_token(
    subject_id: str,
    *,
    kind: ActorKind = "user",
    role: str | None = None,
    now: int | None = None,
) -> tuple[str, dict[str, Any]]:
    """
    Mint a bearer session token. Logins live outside this service; the
    issuer shares SIGNING_KEY and this helper exists for it and for tests.
    """
    issued_at = int(time.time()) if now is None else int(now)
    payload = {
        "sub": subject_id.strip(),
        "kind": kind,
        "typ": "session",
        "iat": issued_at,
        "exp": issued_at + config.AUTH_TOKEN_TTL_SECONDS,
    }
    if role:
        payload["role"] = role
    payload_json = json.dumps(payload, separators=(",", ":"), sort_keys=True)
    payload_b64 = b64url_encode(payload_json.encode("utf-8"))
    token = f"{payload_b64}.{sign(payload_b64, config.SIGNING_KEY)}"
    return token, payload


def decode_session_token(token: str) -> dict[str, Any] | None:
    if not token or "." not in token:
        return None

    payload_b64, signature = token.split(".", 1)
    try:
        if not signature_matches(payload_b64, signature, config.SIGNING_KEY):
            return None
    except UnicodeEncodeError:
        return None

    try:
        payload_raw = b64url_decode(payload_b64).decode("utf-8")
        payload = json.loads(payload_raw)
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None

    if not isinstance(payload, dict):
        return None

    # QR tokens are signed with the same key when QR_SECRET is unset.
    if payload.get("typ") != "session":
        return None

    sub = payload.get("sub")
    exp = payload.get("exp")
    if not isinstance(sub, str) or not sub.strip():
        return None
    if payload.get("kind", "user") not in ACTOR_KINDS:
        return None
    if not isinstance(exp, int):
        return None
    if exp < int(time.time()):
        return None

    return payload


def require_session(authorization: str | None = Header(default=None)) -> dict[str, Any]:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing bearer token.")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Invalid authorization scheme.")

    payload = decode_session_token(token.strip())
    if not payload:
        raise HTTPException(status_code=401, detail="Invalid or expired session token.")

    return payload


def get_current_actor(session: dict[str, Any] = Depends(require_session)) -> Actor:
    with read_only() as conn:
        actor = resolve_actor(conn, session["sub"].strip(), session.get("kind", "user"))
    if actor is None:
        raise HTTPException(status_code=401, detail="Unknown session subject.")
    return actor


def require_roles(*roles: str) -> Callable[..., Actor]:
    allowed = set(roles)

    def dependency(actor: Actor = Depends(get_current_actor)) -> Actor:
        if not actor.is_active or actor.role not in allowed:
            raise ActorNotAllowed(actor.role)
        return actor

    return dependency
