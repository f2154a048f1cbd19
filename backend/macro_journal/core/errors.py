"""
Centralized error handling for auth, record store and text-generation failures.
Constants and reusable predicates so services stay thin and new error types are easy to add.
"""
from __future__ import annotations

from typing import Callable

from fastapi import HTTPException
from sqlalchemy.exc import DBAPIError, OperationalError

# ---------------------------------------------------------------------------
# Constants: status codes and user-facing messages
# ---------------------------------------------------------------------------

ANTHROPIC_BILLING_URL = "https://console.anthropic.com/settings/billing"
MSG_AI_QUOTA_EXCEEDED = (
    "AI service quota exceeded or rate limited. Check your Anthropic plan and billing at {url}"
).format(url=ANTHROPIC_BILLING_URL)

STATUS_UNAUTHORIZED = 401
STATUS_RATE_LIMITED = 429
STATUS_SERVICE_UNAVAILABLE = 503  # quota, rate limit, provider down
STATUS_INTERNAL_ERROR = 500


class AuthError(Exception):
    """Auth provider call failed. status_code is the HTTP status when there was a response."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TextGenerationError(Exception):
    """Text-generation proxy unreachable, non-2xx, or returned a malformed body."""


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------


def _status_of(exc: BaseException) -> int | None:
    status = getattr(exc, "status_code", None)
    return status if isinstance(status, int) else None


def is_rate_limit_error(exc: BaseException) -> bool:
    """HTTP 429 or a 'rate limit' message."""
    if _status_of(exc) == STATUS_RATE_LIMITED:
        return True
    msg = str(exc).lower()
    return "429" in msg or "rate limit" in msg


def is_expired_token_error(exc: BaseException) -> bool:
    """401 / expired JWT from the record store or auth provider."""
    if _status_of(exc) == STATUS_UNAUTHORIZED:
        return True
    msg = str(exc).lower()
    return "401" in msg or "jwt expired" in msg or "token is expired" in msg


def is_transient_error(exc: BaseException) -> bool:
    """Worth retrying a read: rate limit, expired token, or a dropped DB connection."""
    if is_rate_limit_error(exc) or is_expired_token_error(exc):
        return True
    if isinstance(exc, OperationalError):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


def _is_quota_error(msg: str) -> bool:
    lower = msg.lower()
    return (
        "429" in msg
        or "insufficient_quota" in lower
        or "quota" in lower
        or "rate limit" in lower
        or "overloaded" in lower
    )


# List of (predicate, status_code, detail). First match wins.
AGENT_ERROR_RULES: list[tuple[Callable[[str], bool], int, str]] = [
    (_is_quota_error, STATUS_SERVICE_UNAVAILABLE, MSG_AI_QUOTA_EXCEEDED),
]


def agent_error_to_http(exc: Exception) -> HTTPException:
    """
    Map an exception from an agent run into an HTTPException.
    Uses AGENT_ERROR_RULES for known error types; otherwise returns 500 with the exception message.
    """
    msg = str(exc)
    for predicate, status_code, detail in AGENT_ERROR_RULES:
        if predicate(msg):
            return HTTPException(status_code=status_code, detail=detail)
    return HTTPException(status_code=STATUS_INTERNAL_ERROR, detail=msg)
