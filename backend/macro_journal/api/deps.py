"""
Shared route dependencies: the signed-in user (Authorization: Bearer), what the client reports
about itself (X-Timezone, X-Client-Route) and the user's insight runtime.
"""
import logging

from fastapi import Depends, Header, HTTPException, Request

from macro_journal.core.errors import (
    STATUS_RATE_LIMITED,
    STATUS_SERVICE_UNAVAILABLE,
    STATUS_UNAUTHORIZED,
    AuthError,
    is_rate_limit_error,
)
from macro_journal.services.auth_client import user_id_from_access_token
from macro_journal.services.insight_engine import parse_zone
from macro_journal.services.insight_runtime import InsightRuntime, InsightSessions

logger = logging.getLogger(__name__)


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def auth_error_status(exc: AuthError) -> int:
    """429 for rate limits, 503 when the auth service could not be reached, 401 otherwise."""
    if is_rate_limit_error(exc):
        return STATUS_RATE_LIMITED
    if exc.status_code is None:
        return STATUS_SERVICE_UNAVAILABLE
    return STATUS_UNAUTHORIZED


def current_user_id(authorization: str | None = Header(None)) -> str:
    # Single attempt; the client retries 429 and 503.
    token = _bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=STATUS_UNAUTHORIZED, detail="Missing bearer token")
    try:
        return user_id_from_access_token(token)
    except AuthError as e:
        status = auth_error_status(e)
        logger.info("Rejected bearer token (%s): %s", status, e)
        raise HTTPException(status_code=status, detail=str(e)) from e


def current_timezone(x_timezone: str | None = Header(None)) -> str | None:
    """The device's IANA zone; days and entry times are read in it."""
    if not x_timezone:
        return None
    if parse_zone(x_timezone) is None:
        raise HTTPException(status_code=400, detail=f"Unknown time zone: {x_timezone}")
    return x_timezone.strip()


def client_route(x_client_route: str | None = Header(None)) -> str | None:
    return x_client_route.strip() if x_client_route else None


def get_sessions(request: Request) -> InsightSessions:
    return request.app.state.sessions


def get_runtime(
    user_id: str = Depends(current_user_id),
    sessions: InsightSessions = Depends(get_sessions),
    timezone: str | None = Depends(current_timezone),
    route: str | None = Depends(client_route),
) -> InsightRuntime:
    return sessions.get(user_id, timezone=timezone, route=route)
