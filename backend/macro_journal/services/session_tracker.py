"""
Session tracker: resolves the current user with retry/backoff and reacts to auth lifecycle events.

Owns the per-session SessionContext; adapters, ledger and engine get the same context by
reference, so clearing it on sign-out clears every dependent cache at once.
"""
import logging
import threading
import time
from concurrent.futures import Future
from typing import Any, Callable, Protocol

from macro_journal.core.constants import AUTH_ROUTES
from macro_journal.core.errors import is_rate_limit_error
from macro_journal.core.retry import call_with_backoff
from macro_journal.services.types import Alert, AppNotification, SessionEvent

logger = logging.getLogger(__name__)

UserListener = Callable[[str | None, str | None], None]


class AuthProvider(Protocol):
    """Interface for the auth/session provider (Supabase GoTrue in production)."""

    def get_user(self) -> dict[str, Any] | None:
        """Current user object ({'id': ...}) or None without a session. Raises AuthError on failure."""
        ...

    def on_auth_state_change(self, callback: Callable[[SessionEvent], None]) -> None:
        """Register a callback for SIGNED_OUT / TOKEN_REFRESHED / SESSION_PRESENT."""
        ...


class SessionContext:
    """Everything the insight services keep in memory for one signed-in session."""

    def __init__(self, user_id: str | None = None, route: str | None = None):
        self.user_id = user_id
        self.route = route
        self.state_lock = threading.RLock()
        # Held for the duration of one ledger load / one evaluation pass; acquired non-blocking.
        self.ledger_lock = threading.Lock()
        self.evaluation_lock = threading.Lock()
        self._clear_state()

    def _clear_state(self) -> None:
        self.notifications: list[AppNotification] = []
        self.notifications_loaded = False
        self.settings: dict[str, Any] = {}
        self.alerts: list[Alert] = []
        self.latches: set[str] = set()
        self.daily_quote: str | None = None
        self.report: str | None = None
        self.report_error: str | None = None
        self.report_fingerprint: str | None = None
        self.snack_error: str | None = None
        self.last_seen_date: str | None = None

    def is_current(self, user_id: str | None) -> bool:
        """False once the session moved to another user (or signed out) since user_id was captured."""
        return user_id is not None and self.user_id == user_id

    def reset(self, user_id: str | None = None) -> None:
        """Switch to user_id (None = signed out) and drop all state that belonged to the previous user."""
        with self.state_lock:
            self.user_id = user_id
            self._clear_state()

    def push_alert(self, title: str, body: str, type: str = "error") -> None:
        with self.state_lock:
            self.alerts.append({"title": title, "body": body, "type": type})

    def drain_alerts(self) -> list[Alert]:
        with self.state_lock:
            alerts, self.alerts = self.alerts, []
        return alerts


class SessionTracker:
    """Resolves identity for one SessionContext; notifies listeners when the user changes."""

    def __init__(
        self,
        provider: AuthProvider,
        ctx: SessionContext | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._provider = provider
        self.ctx = ctx or SessionContext()
        self._sleep = sleep
        self._listeners: list[UserListener] = []
        self._refresh_lock = threading.Lock()
        self._refresh_in_flight: Future | None = None

    def subscribe(self, listener: UserListener) -> None:
        """listener(previous_user_id, current_user_id) is called after every user change."""
        self._listeners.append(listener)

    def set_route(self, route: str | None) -> None:
        self.ctx.route = route

    def _on_auth_route(self) -> bool:
        route = (self.ctx.route or "").rstrip("/") or "/"
        return route in AUTH_ROUTES

    def resolve_user(self) -> str | None:
        """
        Ask the provider who is signed in. Rate limits are retried with backoff (5 attempts);
        any other failure, or running out of attempts, is treated as signed out.
        Skipped on the login/logout pages; the cached user is returned unchanged there.
        """
        if self._on_auth_route():
            logger.debug("On %s; skipping identity resolution", self.ctx.route)
            return self.ctx.user_id
        try:
            user = call_with_backoff(
                self._provider.get_user,
                should_retry=is_rate_limit_error,
                sleep=self._sleep,
                label="Identity resolution",
            )
        except Exception as e:
            logger.warning("Identity resolution failed; treating as signed out: %s", e)
            user = None
        user_id = str(user["id"]) if isinstance(user, dict) and user.get("id") else None
        self._set_user(user_id)
        return user_id

    def refresh(self) -> str | None:
        """Re-resolve after a token refresh. Concurrent callers share the in-flight call's result."""
        with self._refresh_lock:
            future = self._refresh_in_flight
            owner = future is None
            if owner:
                future = self._refresh_in_flight = Future()
        if not owner:
            return future.result()
        try:
            user_id = self.resolve_user()
            future.set_result(user_id)
            return user_id
        except BaseException as e:
            future.set_exception(e)
            raise
        finally:
            with self._refresh_lock:
                self._refresh_in_flight = None

    def handle_event(self, event: SessionEvent | str) -> None:
        event = SessionEvent(event)
        logger.info("Auth event %s (user=%s)", event.value, self.ctx.user_id)
        if event is SessionEvent.SIGNED_OUT:
            self._set_user(None)
        elif event is SessionEvent.TOKEN_REFRESHED:
            self.refresh()
        elif event is SessionEvent.SESSION_PRESENT and self.ctx.user_id is None:
            self.resolve_user()

    def _set_user(self, user_id: str | None) -> None:
        previous = self.ctx.user_id
        if previous == user_id:
            return
        self.ctx.reset(user_id)
        if user_id is None:
            logger.info("Signed out; cleared session state for %s", previous)
        else:
            logger.info("Resolved user %s", user_id)
        for listener in list(self._listeners):
            try:
                listener(previous, user_id)
            except Exception:
                logger.exception("User listener failed")
