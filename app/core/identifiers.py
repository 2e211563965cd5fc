"""Key normalization shared by the services. Invalid input is rejected before any write."""

from datetime import datetime, timezone
from typing import Optional

from app.core.exceptions import InvalidInputError


def require_id(value: Optional[str], label: str) -> str:
    """Strip an opaque document key; empty or missing keys are rejected."""
    if value is None or not str(value).strip():
        raise InvalidInputError(f"{label} is required")
    return str(value).strip()


def normalize_email(email: Optional[str]) -> str:
    """Users are keyed by email; compare case-insensitively like login does."""
    value = require_id(email, "email").lower()
    if "@" not in value:
        raise InvalidInputError("email is malformed")
    return value


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
