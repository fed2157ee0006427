import os
import secrets
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parents[1]

DB_PATH = Path(os.getenv("EXPOGATE_DB_PATH", BASE_DIR / "database" / "expogate.db"))
DB_BUSY_TIMEOUT_SECONDS = float(os.getenv("EXPOGATE_DB_BUSY_TIMEOUT_SECONDS", "10"))

SIGNING_KEY = (
    os.getenv("EXPOGATE_SIGNING_KEY", "").strip()
    or secrets.token_urlsafe(32)
)
# QR tokens fall back to the session signing key.
QR_SECRET = os.getenv("EXPOGATE_QR_SECRET", "").strip() or SIGNING_KEY
AUTH_TOKEN_TTL_SECONDS = int(os.getenv("EXPOGATE_AUTH_TOKEN_TTL_SECONDS", "43200"))

LOG_LEVEL = os.getenv("EXPOGATE_LOG_LEVEL", "INFO").strip().upper() or "INFO"


def _parse_bool(value: str | None, fallback: bool) -> bool:
    if value is None:
        return fallback
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return fallback


def _parse_csv(value: str | None, fallback: list[str]) -> list[str]:
    if not value:
        return fallback
    parsed = [item.strip() for item in value.split(",") if item.strip()]
    return parsed or fallback


def _parse_seconds(value: str | None, fallback: int) -> int:
    if not value:
        return fallback
    try:
        return max(0, int(value))
    except ValueError:
        return fallback


CORS_ALLOW_ORIGINS = _parse_csv(
    os.getenv("EXPOGATE_CORS_ALLOW_ORIGINS"),
    ["http://localhost:5173", "http://127.0.0.1:5173"],
)
CORS_ALLOW_METHODS = _parse_csv(
    os.getenv("EXPOGATE_CORS_ALLOW_METHODS"),
    ["GET", "POST", "OPTIONS"],
)
CORS_ALLOW_HEADERS = _parse_csv(
    os.getenv("EXPOGATE_CORS_ALLOW_HEADERS"),
    ["Authorization", "Content-Type", "Accept"],
)
CORS_ALLOW_CREDENTIALS = _parse_bool(os.getenv("EXPOGATE_CORS_ALLOW_CREDENTIALS"), True)
ENABLE_DEBUG_ENDPOINTS = _parse_bool(os.getenv("EXPOGATE_ENABLE_DEBUG_ENDPOINTS"), False)

# QR token lifetimes
STUDENT_TOKEN_TTL_SECONDS = _parse_seconds(os.getenv("EXPOGATE_STUDENT_TOKEN_TTL_SECONDS"), 24 * 60 * 60)
STALL_TOKEN_TTL_SECONDS = _parse_seconds(os.getenv("EXPOGATE_STALL_TOKEN_TTL_SECONDS"), 365 * 24 * 60 * 60)

# Gate debounce windows
CHECKOUT_MIN_SECONDS = _parse_seconds(os.getenv("EXPOGATE_CHECKOUT_MIN_SECONDS"), 30)
CHECKIN_COOLDOWN_SECONDS = _parse_seconds(os.getenv("EXPOGATE_CHECKIN_COOLDOWN_SECONDS"), 60)

# Voting
DEFAULT_MAX_VOTES_PER_STUDENT = max(
    1,
    int(os.getenv("EXPOGATE_DEFAULT_MAX_VOTES_PER_STUDENT", "3")),
)
MIN_DEPARTMENT_FEEDBACKS = 3

NULLIFIED_REASON_EVENT_ENDED = "Event ended without checkout"
