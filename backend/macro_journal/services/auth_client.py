"""Auth providers for the session tracker: Supabase GoTrue over HTTP, and a fixed user for the API."""
import logging
import threading
import time
from typing import Any, Callable

import httpx
import jwt

from macro_journal.config import settings
from macro_journal.core.constants import AUTH_TIMEOUT_SECONDS, TOKEN_REFRESH_MARGIN_SECONDS
from macro_journal.core.errors import AuthError
from macro_journal.services.types import SessionEvent

logger = logging.getLogger(__name__)

AuthCallback = Callable[[SessionEvent], None]


def token_expires_at(access_token: str) -> float | None:
    """exp claim of a JWT (epoch seconds). Signature is not checked; GoTrue validates the token."""
    try:
        claims = jwt.decode(access_token, options={"verify_signature": False})
    except jwt.PyJWTError as e:
        logger.debug("Could not decode access token: %s", e)
        return None
    exp = claims.get("exp")
    return float(exp) if isinstance(exp, (int, float)) else None


class GoTrueAuthProvider:
    """
    Supabase auth client for one session. Holds the access/refresh tokens and emits
    SESSION_PRESENT, TOKEN_REFRESHED and SIGNED_OUT to registered callbacks.
    """

    def __init__(
        self,
        access_token: str | None = None,
        refresh_token: str | None = None,
        *,
        base_url: str | None = None,
        anon_key: str | None = None,
        client: httpx.Client | None = None,
        timeout: float = AUTH_TIMEOUT_SECONDS,
    ) -> None:
        self._base_url = (base_url or settings.supabase_url).rstrip("/")
        self._anon_key = anon_key if anon_key is not None else settings.supabase_anon_key
        self._client = client
        self._timeout = timeout
        self._lock = threading.Lock()
        self._callbacks: list[AuthCallback] = []
        self.access_token = access_token
        self.refresh_token = refresh_token

    def on_auth_state_change(self, callback: AuthCallback) -> None:
        self._callbacks.append(callback)

    def _emit(self, event: SessionEvent) -> None:
        for callback in list(self._callbacks):
            try:
                callback(event)
            except Exception:
                logger.exception("Auth callback failed for %s", event.value)

    def _headers(self, access_token: str | None = None) -> dict[str, str]:
        h = {"apikey": self._anon_key}
        if access_token:
            h["Authorization"] = f"Bearer {access_token}"
        return h

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        if not self._base_url:
            raise AuthError("Auth not configured. Add SUPABASE_URL and SUPABASE_ANON_KEY to .env.")
        url = f"{self._base_url}{path}"
        try:
            if self._client is not None:
                return self._client.request(method, url, timeout=self._timeout, **kwargs)
            with httpx.Client(timeout=self._timeout) as c:
                return c.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise AuthError(f"Auth request failed: {e}") from e

    # --- Session ---

    def set_session(self, access_token: str, refresh_token: str | None = None) -> None:
        with self._lock:
            self.access_token = access_token
            self.refresh_token = refresh_token
        self._emit(SessionEvent.SESSION_PRESENT)

    def get_user(self) -> dict[str, Any] | None:
        """User object for the current access token; None without one. Raises AuthError (with status) on failure."""
        token = self.access_token
        if not token:
            return None
        r = self._request("GET", "/auth/v1/user", headers=self._headers(token))
        if not r.is_success:
            detail = r.text[:300] if r.text else ""
            raise AuthError(f"Auth error: {r.status_code} {detail}".strip(), status_code=r.status_code)
        try:
            user = r.json()
        except ValueError as e:
            raise AuthError("Auth returned a non-JSON body") from e
        return user if isinstance(user, dict) and user.get("id") else None

    def needs_refresh(self, margin: float = TOKEN_REFRESH_MARGIN_SECONDS, now: float | None = None) -> bool:
        if not self.access_token or not self.refresh_token:
            return False
        exp = token_expires_at(self.access_token)
        if exp is None:
            return False
        return exp - (now if now is not None else time.time()) <= margin

    def refresh_session(self) -> bool:
        """Exchange the refresh token. Emits TOKEN_REFRESHED on success; failures are logged, not raised."""
        refresh_token = self.refresh_token
        if not refresh_token:
            return False
        try:
            r = self._request(
                "POST",
                "/auth/v1/token",
                params={"grant_type": "refresh_token"},
                json={"refresh_token": refresh_token},
                headers=self._headers(),
            )
        except AuthError as e:
            logger.warning("Token refresh failed: %s", e)
            return False
        if not r.is_success:
            logger.warning("Token refresh returned %s: %s", r.status_code, r.text[:300] if r.text else "")
            return False
        try:
            body = r.json()
        except ValueError:
            logger.warning("Token refresh returned a non-JSON body")
            return False
        access_token = body.get("access_token") if isinstance(body, dict) else None
        if not access_token:
            logger.warning("Token refresh response had no access_token")
            return False
        with self._lock:
            self.access_token = access_token
            self.refresh_token = body.get("refresh_token") or refresh_token
        self._emit(SessionEvent.TOKEN_REFRESHED)
        return True

    def sign_out(self) -> None:
        """Best-effort server logout; local tokens are always dropped and SIGNED_OUT emitted."""
        token = self.access_token
        if token:
            try:
                r = self._request("POST", "/auth/v1/logout", headers=self._headers(token))
                if not r.is_success:
                    logger.warning("Logout returned %s", r.status_code)
            except AuthError as e:
                logger.warning("Logout request failed: %s", e)
        with self._lock:
            self.access_token = None
            self.refresh_token = None
        self._emit(SessionEvent.SIGNED_OUT)


class StaticUserProvider:
    """A user already authenticated by the caller (the API's bearer check)."""

    def __init__(self, user_id: str) -> None:
        self._user: dict[str, Any] | None = {"id": user_id}
        self._callbacks: list[AuthCallback] = []

    def get_user(self) -> dict[str, Any] | None:
        return self._user

    def on_auth_state_change(self, callback: AuthCallback) -> None:
        self._callbacks.append(callback)

    def sign_out(self) -> None:
        self._user = None
        for callback in list(self._callbacks):
            callback(SessionEvent.SIGNED_OUT)


def user_id_from_access_token(access_token: str) -> str:
    """Validate a bearer token with GoTrue and return the user id. Raises AuthError (401 when unknown)."""
    user = GoTrueAuthProvider(access_token).get_user()
    if not user:
        raise AuthError("Not signed in", status_code=401)
    return str(user["id"])
