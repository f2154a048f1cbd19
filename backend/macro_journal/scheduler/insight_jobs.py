"""
Timer jobs for insight runtimes (APScheduler BackgroundScheduler).

Snack check: every 30 minutes, one evaluation pass with the timer trigger.
Date rollover: every 60 seconds, a pass when the local calendar day changed since the last pass.
Token refresh: refreshes GoTrue access tokens shortly before they expire.
Jobs never raise; failures are logged and the next tick tries again.
"""
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from macro_journal.services.auth_client import GoTrueAuthProvider
    from macro_journal.services.insight_runtime import InsightRuntime, InsightSessions

logger = logging.getLogger(__name__)


def run_snack_check(runtime: "InsightRuntime") -> None:
    try:
        runtime.timer_tick()
    except Exception as e:
        logger.warning("Snack check failed for runtime %s: %s", runtime.runtime_id, e, exc_info=True)


def run_date_rollover_check(runtime: "InsightRuntime") -> None:
    try:
        runtime.check_date_rollover()
    except Exception as e:
        logger.warning("Date rollover check failed for runtime %s: %s", runtime.runtime_id, e, exc_info=True)


def run_token_refresh_check(provider: "GoTrueAuthProvider") -> None:
    try:
        if provider.needs_refresh():
            provider.refresh_session()
    except Exception as e:
        logger.warning("Token refresh check failed: %s", e, exc_info=True)


def run_sessions_snack_check(sessions: "InsightSessions") -> None:
    """Snack check for every active API session."""
    runtimes = sessions.active()
    for runtime in runtimes:
        run_snack_check(runtime)
    if runtimes:
        logger.debug("Snack check ran for %s sessions", len(runtimes))


def run_sessions_date_rollover_check(sessions: "InsightSessions") -> None:
    for runtime in sessions.active():
        run_date_rollover_check(runtime)
