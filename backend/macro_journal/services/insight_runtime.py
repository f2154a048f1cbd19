"""
Insight runtime: wires one session's tracker, adapters, ledger and engine, and owns its timers.

All collaborators share one SessionContext, so a sign-out clears every cache at once.
InsightSessions keeps one runtime per signed-in user for the HTTP API.
"""
import logging
import threading
import time
import uuid
from datetime import datetime
from typing import Callable
from zoneinfo import ZoneInfo

from apscheduler.schedulers.base import BaseScheduler
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from macro_journal.core.constants import (
    DATE_ROLLOVER_CHECK_SECONDS,
    KEY_TIMEZONE,
    ROLLOVER_JOB_PREFIX,
    SNACK_CHECK_INTERVAL_MINUTES,
    SNACK_JOB_PREFIX,
    TOKEN_REFRESH_CHECK_SECONDS,
    TOKEN_REFRESH_JOB_PREFIX,
)
from macro_journal.db.session import SessionLocal
from macro_journal.scheduler.insight_jobs import run_date_rollover_check, run_snack_check, run_token_refresh_check
from macro_journal.services.auth_client import GoTrueAuthProvider, StaticUserProvider
from macro_journal.services.entry_repository import EntryRepository
from macro_journal.services.insight_engine import (
    TRIGGER_DATE_ROLLOVER,
    TRIGGER_ENTRIES_LOADED,
    TRIGGER_GOALS_CHANGED,
    TRIGGER_LEDGER_LOADED,
    TRIGGER_TIMER,
    EvaluationResult,
    InsightEngine,
    local_now,
    parse_zone,
)
from macro_journal.services.notification_ledger import NotificationLedger
from macro_journal.services.push import NotificationSurface
from macro_journal.services.session_tracker import AuthProvider, SessionContext, SessionTracker
from macro_journal.services.settings_store import SettingsStore
from macro_journal.services.text_generation import HttpTextGenerator, TextGenerator
from macro_journal.services.types import MacroGoals

logger = logging.getLogger(__name__)


class InsightRuntime:
    """One user session: resolve identity, load the ledger, evaluate on every trigger."""

    def __init__(
        self,
        provider: AuthProvider,
        *,
        session_factory: Callable[[], Session] = SessionLocal,
        text: TextGenerator | None = None,
        surface: NotificationSurface | None = None,
        scheduler: BaseScheduler | None = None,
        clock: Callable[[], datetime] = local_now,
        sleep: Callable[[float], None] = time.sleep,
        auto_evaluate: bool = True,
    ):
        self.runtime_id = uuid.uuid4().hex[:8]
        self.provider = provider
        self.ctx = SessionContext()
        self.tracker = SessionTracker(provider, self.ctx, sleep=sleep)
        self.entries = EntryRepository(session_factory)
        self.settings = SettingsStore(self.ctx, session_factory)
        self.ledger = NotificationLedger(self.ctx, session_factory, sleep=sleep)
        self.zone: ZoneInfo | None = None
        self.engine = InsightEngine(
            self.ctx,
            self.entries,
            self.settings,
            self.ledger,
            text or HttpTextGenerator(),
            surface,
            clock=self.now,
        )
        self._clock = clock
        self._scheduler = scheduler
        self._job_ids: list[str] = []
        self._auto_evaluate = auto_evaluate
        self._started = threading.Event()
        self.tracker.subscribe(self._on_user_changed)
        provider.on_auth_state_change(self.tracker.handle_event)

    @property
    def user_id(self) -> str | None:
        return self.ctx.user_id

    def now(self) -> datetime:
        """The user's wall clock: "today" and entry times are read in their zone, not the server's."""
        at = self._clock()
        return at.astimezone(self.zone) if self.zone is not None else at

    # --- Lifecycle ---

    def start(self) -> str | None:
        """Resolve the user (which bootstraps the first pass) and schedule this runtime's timers."""
        try:
            user_id = self.tracker.resolve_user()
            if self._scheduler is not None and not self._job_ids:
                self._schedule_jobs()
            return user_id
        finally:
            self._started.set()

    def wait_started(self, timeout: float | None = None) -> bool:
        return self._started.wait(timeout)

    def stop(self) -> None:
        if self._scheduler is None:
            return
        for job_id in self._job_ids:
            try:
                self._scheduler.remove_job(job_id)
            except Exception as e:
                logger.debug("Job %s already gone: %s", job_id, e)
        self._job_ids = []
        logger.info("Runtime %s stopped", self.runtime_id)

    def _schedule_jobs(self) -> None:
        snack_id = f"{SNACK_JOB_PREFIX}_{self.runtime_id}"
        self._scheduler.add_job(
            run_snack_check,
            "interval",
            minutes=SNACK_CHECK_INTERVAL_MINUTES,
            args=[self],
            id=snack_id,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        rollover_id = f"{ROLLOVER_JOB_PREFIX}_{self.runtime_id}"
        self._scheduler.add_job(
            run_date_rollover_check,
            "interval",
            seconds=DATE_ROLLOVER_CHECK_SECONDS,
            args=[self],
            id=rollover_id,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._job_ids = [snack_id, rollover_id]
        if isinstance(self.provider, GoTrueAuthProvider):
            token_id = f"{TOKEN_REFRESH_JOB_PREFIX}_{self.runtime_id}"
            self._scheduler.add_job(
                run_token_refresh_check,
                "interval",
                seconds=TOKEN_REFRESH_CHECK_SECONDS,
                args=[self.provider],
                id=token_id,
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
            self._job_ids.append(token_id)
        logger.info("Runtime %s scheduled jobs: %s", self.runtime_id, ", ".join(self._job_ids))

    def _on_user_changed(self, previous: str | None, current: str | None) -> None:
        if current is None:
            return
        self._sync_timezone(current)
        if self._auto_evaluate:
            self.bootstrap(current)

    # --- Client hints ---

    def set_timezone(self, name: str | None) -> bool:
        """Use the user's IANA zone from now on and remember it in settings. False when unknown."""
        zone = parse_zone(name)
        if zone is None:
            return False
        changed = self.zone is None or self.zone.key != zone.key
        self.zone = zone
        user_id = self.ctx.user_id
        if changed and user_id is not None:
            self.settings.upsert(user_id, KEY_TIMEZONE, zone.key)
        return True

    def _sync_timezone(self, user_id: str) -> None:
        """Adopt the stored zone, or store the one the client sent before the user was resolved."""
        try:
            stored = self.settings.get(user_id, KEY_TIMEZONE)
        except SQLAlchemyError as e:
            logger.warning("Reading time zone for %s failed: %s", user_id, e)
            return
        if self.zone is None:
            self.zone = parse_zone(stored)
        elif stored != self.zone.key:
            self.settings.upsert(user_id, KEY_TIMEZONE, self.zone.key)

    def set_route(self, route: str | None) -> str | None:
        """
        Record the page the client is on. Leaving the login/logout pages without a user
        re-runs identity resolution, which was skipped while there.
        """
        self.tracker.set_route(route)
        if self.ctx.user_id is None:
            return self.tracker.resolve_user()
        return self.ctx.user_id

    # --- Triggers ---

    def bootstrap(self, user_id: str) -> EvaluationResult | None:
        """Load the ledger for a newly resolved user, then run the first pass."""
        if self.ledger.load(user_id) is None:
            return None
        return self.engine.evaluate(TRIGGER_LEDGER_LOADED)

    def entries_changed(self) -> EvaluationResult | None:
        return self.engine.evaluate(TRIGGER_ENTRIES_LOADED)

    def goals_changed(self, goals: MacroGoals) -> EvaluationResult | None:
        user_id = self.ctx.user_id
        if user_id is None or not self.settings.set_macro_goals(user_id, goals):
            return None
        return self.engine.evaluate(TRIGGER_GOALS_CHANGED)

    def timer_tick(self) -> EvaluationResult | None:
        return self.engine.evaluate(TRIGGER_TIMER)

    def check_date_rollover(self) -> EvaluationResult | None:
        """A pass when the local day moved past the day of the last pass; None otherwise."""
        last_seen = self.ctx.last_seen_date
        if self.ctx.user_id is None or last_seen is None:
            return None
        today = self.now().date().isoformat()
        if today == last_seen:
            return None
        logger.info("Date rolled over from %s to %s for %s", last_seen, today, self.ctx.user_id)
        return self.engine.evaluate(TRIGGER_DATE_ROLLOVER)


class InsightSessions:
    """One runtime per user id for API callers. Runtimes are created on first use and started immediately."""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        text_factory: Callable[[], TextGenerator] | None = None,
        surface: NotificationSurface | None = None,
        *,
        clock: Callable[[], datetime] = local_now,
        auto_evaluate: bool = True,
    ):
        self._session_factory = session_factory
        self._text_factory = text_factory or HttpTextGenerator
        self._surface = surface
        self._clock = clock
        self._auto_evaluate = auto_evaluate
        self._lock = threading.Lock()
        self._runtimes: dict[str, InsightRuntime] = {}

    def get(self, user_id: str, timezone: str | None = None, route: str | None = None) -> InsightRuntime:
        """
        The user's runtime, created and started on first use. timezone (IANA name) and route are
        what the client reports about itself; callers that arrive while another request is still
        starting the runtime wait for it.
        """
        with self._lock:
            runtime = self._runtimes.get(user_id)
            created = runtime is None
            if created:
                runtime = InsightRuntime(
                    StaticUserProvider(user_id),
                    session_factory=self._session_factory,
                    text=self._text_factory(),
                    surface=self._surface,
                    clock=self._clock,
                    auto_evaluate=self._auto_evaluate,
                )
                self._runtimes[user_id] = runtime
        if created:
            logger.info("Started insight session %s for %s", runtime.runtime_id, user_id)
            if timezone:
                runtime.set_timezone(timezone)
            runtime.tracker.set_route(route)
            runtime.start()
            return runtime
        runtime.wait_started()
        if timezone:
            runtime.set_timezone(timezone)
        if route is not None:
            runtime.set_route(route)
        return runtime

    def sign_out(self, user_id: str) -> bool:
        """Drop the user's runtime; its context is cleared through the SIGNED_OUT event."""
        with self._lock:
            runtime = self._runtimes.pop(user_id, None)
        if runtime is None:
            return False
        runtime.provider.sign_out()
        runtime.stop()
        return True

    def active(self) -> list[InsightRuntime]:
        with self._lock:
            return list(self._runtimes.values())
