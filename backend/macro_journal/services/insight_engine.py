"""
Insight engine: decides which automated notifications a user gets right now.

Rules run in a fixed order inside one evaluation pass (welcome, learning period, daily
motivation, daily report, snack reminder). Each rule is idempotent: the ledger title scan is
the primary dedup guard and the settings flag is the faster secondary guard plus the record
of why the rule already fired. A pass that starts while another is running is dropped.
"""
import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.exc import SQLAlchemyError

from macro_journal.core.constants import (
    DAILY_MOTIVATION_TITLE,
    KEY_DAILY_MOTIVATION,
    KEY_DAILY_REPORT,
    KEY_FIRST_ENTRY_DATE,
    KEY_HAS_SENT_WELCOME,
    KEY_LAST_SNACK_REMINDER,
    KEY_LEARNING_PERIOD_COMPLETE,
    KEY_MACRO_GOALS,
    LEARNING_COMPLETE_BODY,
    LEARNING_COMPLETE_TITLE,
    LEARNING_PERIOD_DAYS,
    NOTIFY_PERMISSION_NOTE,
    QUOTE_FALLBACK,
    QUOTE_PROMPT,
    REPORT_ENDPOINT,
    REPORT_ERROR,
    REPORT_FALLBACK,
    REPORT_NO_ENTRIES,
    SNACK_COOLDOWN_MINUTES,
    SNACK_ENDPOINT,
    SNACK_ERROR,
    SNACK_TITLE,
    WELCOME_BODY,
    WELCOME_TITLE,
)
from macro_journal.services.entry_repository import (
    EntryRepository,
    entries_on,
    first_entry_date,
    latest_entry_timestamp_ms,
    macro_totals,
)
from macro_journal.services.habit_analyzer import analyze, distinct_days, format_clock, parse_clock_minutes
from macro_journal.services.notification_ledger import NotificationLedger, new_notification
from macro_journal.services.push import PERMISSION_DEFAULT, PERMISSION_GRANTED, NotificationSurface
from macro_journal.services.session_tracker import SessionContext
from macro_journal.services.settings_store import SettingsStore
from macro_journal.services.text_generation import TextGenerator
from macro_journal.services.types import JournalEntry, MacroGoals, MacroTotals, ThirtyDayStats

logger = logging.getLogger(__name__)

LEARNING_LATCH = "learning_period_complete"

# Triggers that start a pass
TRIGGER_USER_RESOLVED = "user_resolved"
TRIGGER_LEDGER_LOADED = "ledger_loaded"
TRIGGER_ENTRIES_LOADED = "entries_loaded"
TRIGGER_GOALS_CHANGED = "goals_changed"
TRIGGER_TIMER = "timer"
TRIGGER_DATE_ROLLOVER = "date_rollover"
TRIGGER_MANUAL = "manual"


def local_now() -> datetime:
    """Server-local, timezone-aware now. Runtimes convert it to the user's zone when one is known."""
    return datetime.now().astimezone()


def parse_zone(name: str | None) -> ZoneInfo | None:
    """IANA zone (e.g. 'America/Los_Angeles'); None when missing or unknown."""
    if not name or not isinstance(name, str):
        return None
    try:
        return ZoneInfo(name.strip())
    except (ZoneInfoNotFoundError, ValueError):
        logger.debug("Unknown time zone %r", name)
        return None


def to_millis(at: datetime) -> int:
    return int(at.timestamp() * 1000)


def _grams(value: float) -> str:
    return f"{value:.1f}".rstrip("0").rstrip(".")


@dataclass
class EvaluationResult:
    trigger: str
    user_id: str
    fired: list[str] = field(default_factory=list)
    skipped: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"trigger": self.trigger, "user_id": self.user_id, "fired": list(self.fired), "skipped": self.skipped}


@dataclass
class _PassState:
    """Inputs one pass reads once and shares across rules."""
    user_id: str
    now: datetime
    entries: list[JournalEntry]
    settings: dict[str, Any]

    @property
    def today(self) -> str:
        return self.now.date().isoformat()

    @property
    def days(self) -> list[str]:
        return distinct_days(self.entries)

    @property
    def enough_history(self) -> bool:
        return len(self.days) >= LEARNING_PERIOD_DAYS

    @property
    def today_entries(self) -> list[JournalEntry]:
        return entries_on(self.entries, self.today)

    @property
    def goals(self) -> MacroGoals:
        return MacroGoals.from_setting(self.settings.get(KEY_MACRO_GOALS))

    @property
    def now_ms(self) -> int:
        return to_millis(self.now)


# --- Prompts ---


def build_report_prompt(goals: MacroGoals, totals: MacroTotals, yesterday_entries: list[JournalEntry]) -> str:
    entries_text = (
        json.dumps([e.to_dict() for e in yesterday_entries]) if yesterday_entries else "No entries logged."
    )
    return f"""📊 Generate a positive daily macro report for yesterday. Keep it encouraging, with no shaming. Include:
- A summary of the user's goals and actual intake.
- Intuitive, specific suggestions to help the user meet their goals, based on yesterday's entries. Suggestions can include:
  * Adding a food (e.g., "Add 6 oz of chicken for 30g protein").
  * Swapping a food (e.g., "Swap your apple for Greek yogurt to add 18g protein").
  * Reducing a food (e.g., "Try having a bit less potato to balance your carbs").
  * Adjusting quantities (e.g., "Reduce your rice from 300g to 250g and increase your ground beef from 8 oz to 10 oz").
  * Or no suggestion if the user is on track (just celebrate their success).
Be creative and precise, focusing on the most impactful change. If no entries exist, provide a fresh-start message with a generic suggestion.

Goals:
- Calories: {_grams(goals.calorie_goal)} kcal
- Protein: {_grams(goals.protein_percent)}% ({_grams(goals.protein_grams)}g)
- Fat: {_grams(goals.fat_percent)}% ({_grams(goals.fat_grams)}g)
- Carbs: {_grams(goals.carb_percent)}% ({_grams(goals.carb_grams)}g)

Yesterday's Intake:
- Protein: {_grams(totals.protein)}g
- Fat: {_grams(totals.fat)}g
- Carbs: {_grams(totals.carbs)}g

Yesterday's Entries: {entries_text}"""


def build_snack_prompt(goals: MacroGoals, totals: MacroTotals, stats: ThirtyDayStats) -> str:
    frequent = ", ".join(stats.most_frequent_foods) or "nothing in particular"
    rare = ", ".join(stats.least_frequent_foods) or "nothing in particular"
    return (
        "Suggest a quick snack to help meet macro goals. Keep it positive and concise (1-2 sentences). "
        f"Current intake: Protein {_grams(totals.protein)}g/{_grams(goals.protein_grams)}g, "
        f"Fat {_grams(totals.fat)}g/{_grams(goals.fat_grams)}g, "
        f"Carbs {_grams(totals.carbs)}g/{_grams(goals.carb_grams)}g. "
        f"Based on the user's eating habits over the last 30 days, they frequently eat {frequent}, "
        f"tend to avoid {rare}, and typically eat around {stats.typical_meal_time}. "
        "Suggest a snack that aligns with their eating habits and helps meet their macro goals."
    )


def report_fingerprint(today: str, goals: MacroGoals, entries: list[JournalEntry]) -> str:
    """Changes whenever the report inputs change (entries, goals, or the calendar day)."""
    raw = json.dumps([today, goals.to_setting(), [e.to_dict() for e in entries]], sort_keys=True, default=str)
    return hashlib.sha256(raw.encode()).hexdigest()


class InsightEngine:
    """Rule evaluation for the session's user. All state goes through ctx, the ledger and the settings store."""

    def __init__(
        self,
        ctx: SessionContext,
        entries: EntryRepository,
        settings: SettingsStore,
        ledger: NotificationLedger,
        text: TextGenerator,
        surface: NotificationSurface | None = None,
        *,
        clock: Callable[[], datetime] = local_now,
    ):
        self.ctx = ctx
        self.entries = entries
        self.settings = settings
        self.ledger = ledger
        self.text = text
        self.surface = surface
        self._clock = clock

    # --- Pass ---

    def evaluate(self, trigger: str = TRIGGER_MANUAL) -> EvaluationResult | None:
        """
        Run one pass for the current user. Returns None when there is no user or when a pass is
        already running (the trigger is dropped, not queued).
        """
        user_id = self.ctx.user_id
        if user_id is None:
            logger.debug("No user; skipping %s pass", trigger)
            return None
        if not self.ctx.evaluation_lock.acquire(blocking=False):
            logger.debug("Evaluation already running for %s; dropping %s trigger", user_id, trigger)
            return None
        try:
            return self._run_pass(user_id, trigger)
        finally:
            self.ctx.evaluation_lock.release()

    def _run_pass(self, user_id: str, trigger: str) -> EvaluationResult:
        result = EvaluationResult(trigger=trigger, user_id=user_id)
        if not self.ctx.notifications_loaded and self.ledger.load(user_id) is None:
            result.skipped = "notifications not loaded"
            return result
        try:
            entries = self.entries.load(user_id)
            stored = self.settings.load(user_id)
        except SQLAlchemyError as e:
            logger.warning("Loading journal state for %s failed: %s", user_id, e)
            if self.ctx.is_current(user_id):
                self.ctx.push_alert("Error Loading Data", "Could not load your journal entries. Please refresh or try again later.")
            result.skipped = "journal state unavailable"
            return result
        if not self.ctx.is_current(user_id):
            result.skipped = "session changed"
            return result

        state = _PassState(user_id=user_id, now=self._clock(), entries=entries, settings=stored)
        self._record_first_entry_date(state)
        rules: list[tuple[str, Callable[[_PassState], bool]]] = [
            ("welcome", self._welcome),
            ("learning_period_complete", self._learning_period_complete),
            ("daily_motivation", self._daily_motivation),
            ("daily_report", self._daily_report),
            ("snack_reminder", self._snack_reminder),
        ]
        for name, rule in rules:
            if not self.ctx.is_current(user_id):
                result.skipped = "session changed"
                break
            try:
                if rule(state):
                    result.fired.append(name)
            except Exception:
                logger.exception("Insight rule %s failed for %s", name, user_id)
        self.ctx.last_seen_date = state.today
        if result.fired:
            logger.info("Insight pass (%s) for %s fired: %s", trigger, user_id, ", ".join(result.fired))
        return result

    # --- Helpers ---

    def _emit(self, state: _PassState, title: str, body: str) -> bool:
        return self.ledger.append(new_notification(state.user_id, title, body, state.now_ms))

    def _pop_up(self, user_id: str, title: str, body: str) -> None:
        """Best-effort pop-up; only when permission was already granted."""
        if self.surface is None:
            return
        try:
            if self.surface.permission(user_id) == PERMISSION_GRANTED:
                self.surface.show(user_id, title, body)
        except Exception as e:
            logger.warning("Pop-up %r failed for %s: %s", title, user_id, e)

    def _pop_up_or_note(self, user_id: str, title: str, body: str) -> None:
        """Pop-up that asks for permission when undecided; without it, leave an in-app note."""
        permission = None
        if self.surface is not None:
            try:
                permission = self.surface.permission(user_id)
                if permission == PERMISSION_DEFAULT:
                    permission = self.surface.request_permission(user_id)
                if permission == PERMISSION_GRANTED:
                    self.surface.show(user_id, title, body)
                    return
            except Exception as e:
                logger.warning("Pop-up %r failed for %s: %s", title, user_id, e)
                return
        self.ctx.push_alert("Notifications are off", NOTIFY_PERMISSION_NOTE, type="info")

    def _record_first_entry_date(self, state: _PassState) -> None:
        if state.settings.get(KEY_FIRST_ENTRY_DATE):
            return
        first = first_entry_date(state.entries)
        if first and self.settings.upsert(state.user_id, KEY_FIRST_ENTRY_DATE, first):
            state.settings[KEY_FIRST_ENTRY_DATE] = first

    # --- Rules ---

    def _welcome(self, state: _PassState) -> bool:
        if state.days:
            return False
        if state.settings.get(KEY_HAS_SENT_WELCOME) is True:
            return False
        if self.ledger.has_title(WELCOME_TITLE):
            return False
        if not self._emit(state, WELCOME_TITLE, WELCOME_BODY):
            return False
        if self.settings.upsert(state.user_id, KEY_HAS_SENT_WELCOME, True):
            state.settings[KEY_HAS_SENT_WELCOME] = True
        self._pop_up(state.user_id, WELCOME_TITLE, WELCOME_BODY)
        return True

    def _learning_period_complete(self, state: _PassState) -> bool:
        if not state.enough_history:
            return False
        if state.settings.get(KEY_LEARNING_PERIOD_COMPLETE) is True or LEARNING_LATCH in self.ctx.latches:
            return False
        if self.ledger.has_title(LEARNING_COMPLETE_TITLE):
            # Fired before but the flag write was lost; record it now.
            self.settings.upsert(state.user_id, KEY_LEARNING_PERIOD_COMPLETE, True)
            self.ctx.latches.add(LEARNING_LATCH)
            return False
        self.ctx.latches.add(LEARNING_LATCH)
        if not self._emit(state, LEARNING_COMPLETE_TITLE, LEARNING_COMPLETE_BODY):
            self.ctx.latches.discard(LEARNING_LATCH)
            return False
        if self.settings.upsert(state.user_id, KEY_LEARNING_PERIOD_COMPLETE, True):
            state.settings[KEY_LEARNING_PERIOD_COMPLETE] = True
        self._pop_up(state.user_id, LEARNING_COMPLETE_TITLE, LEARNING_COMPLETE_BODY)
        return True

    def _daily_motivation(self, state: _PassState) -> bool:
        stored = state.settings.get(KEY_DAILY_MOTIVATION)
        if isinstance(stored, dict) and stored.get("date") == state.today:
            self.ctx.daily_quote = stored.get("dailyQuote")
            return False
        existing = self.ledger.find_title_on(DAILY_MOTIVATION_TITLE, state.now.date(), state.now.tzinfo)
        if existing is not None:
            self.ctx.daily_quote = existing["body"]
            return False

        try:
            quote = self.text.generate(SNACK_ENDPOINT, QUOTE_PROMPT)
        except Exception as e:
            logger.warning("Daily quote generation failed for %s; using fallback: %s", state.user_id, e)
            quote = QUOTE_FALLBACK
        if not self.ctx.is_current(state.user_id):
            return False
        if not self._emit(state, DAILY_MOTIVATION_TITLE, quote):
            return False
        value = {"sent": True, "date": state.today, "dailyQuote": quote}
        if self.settings.upsert(state.user_id, KEY_DAILY_MOTIVATION, value):
            state.settings[KEY_DAILY_MOTIVATION] = value
        self.ctx.daily_quote = quote
        self._pop_up(state.user_id, DAILY_MOTIVATION_TITLE, quote)
        return True

    def _daily_report(self, state: _PassState) -> bool:
        """Recompute the visible report when entries, goals or the day changed. Never deduplicated."""
        goals = state.goals
        fingerprint = report_fingerprint(state.today, goals, state.entries)
        if self.ctx.report_fingerprint == fingerprint:
            return False
        if not state.entries:
            self.ctx.report, self.ctx.report_error = REPORT_NO_ENTRIES, None
            self.ctx.report_fingerprint = fingerprint
            return True

        yesterday = (state.now.date() - timedelta(days=1)).isoformat()
        yesterday_entries = entries_on(state.entries, yesterday)
        prompt = build_report_prompt(goals, macro_totals(yesterday_entries), yesterday_entries)
        try:
            report = self.text.generate(REPORT_ENDPOINT, prompt)
        except Exception as e:
            logger.warning("Daily report generation failed for %s: %s", state.user_id, e)
            if self.ctx.is_current(state.user_id):
                self.ctx.report, self.ctx.report_error = REPORT_FALLBACK, REPORT_ERROR
                self.ctx.report_fingerprint = fingerprint
            return True
        if not self.ctx.is_current(state.user_id):
            return False
        self.ctx.report, self.ctx.report_error = report, None
        self.ctx.report_fingerprint = fingerprint
        self.settings.upsert(state.user_id, KEY_DAILY_REPORT, {"dailyReport": report, "dailyReportDate": state.today})
        return True

    def _snack_reminder(self, state: _PassState) -> bool:
        if not state.enough_history:
            return False
        last_snack = self.ledger.latest_with_title(SNACK_TITLE)
        cooldown_ms = SNACK_COOLDOWN_MINUTES * 60 * 1000
        if last_snack is not None and state.now_ms - last_snack["timestamp"] < cooldown_ms:
            return False
        today_entries = state.today_entries
        last_reminder = state.settings.get(KEY_LAST_SNACK_REMINDER)
        last_meal_ms = latest_entry_timestamp_ms(today_entries, state.now)
        if isinstance(last_reminder, (int, float)) and last_reminder and last_reminder > last_meal_ms:
            return False

        stats = analyze(state.entries, True, state.now)
        if stats is None:
            return False
        meal_minutes = [m for m in (parse_clock_minutes(e.time) for e in today_entries) if m is not None]
        last_meal_minutes = max(meal_minutes) if meal_minutes else float("-inf")
        current_minutes = state.now.hour * 60 + state.now.minute
        if not current_minutes - last_meal_minutes > stats.avg_gap_in_minutes:
            return False

        prompt = build_snack_prompt(state.goals, macro_totals(today_entries), stats)
        try:
            suggestion = self.text.generate(SNACK_ENDPOINT, prompt)
        except Exception as e:
            logger.warning("Snack suggestion failed for %s: %s", state.user_id, e)
            if self.ctx.is_current(state.user_id):
                self.ctx.snack_error = SNACK_ERROR
            return False
        if not self.ctx.is_current(state.user_id):
            return False
        self.ctx.snack_error = None
        body = f"It's {format_clock(current_minutes)}—time for a snack? {suggestion}"
        if not self._emit(state, SNACK_TITLE, body):
            return False
        if self.settings.upsert(state.user_id, KEY_LAST_SNACK_REMINDER, state.now_ms):
            state.settings[KEY_LAST_SNACK_REMINDER] = state.now_ms
        self._pop_up_or_note(state.user_id, SNACK_TITLE, body)
        return True

    # --- Read-out ---

    def dashboard(self) -> dict[str, Any] | None:
        """Today's progress and insight state for the session's user (None without a user)."""
        user_id = self.ctx.user_id
        if user_id is None:
            return None
        now = self._clock()
        entries = self.entries.load(user_id)
        stored = self.settings.load(user_id)
        state = _PassState(user_id=user_id, now=now, entries=entries, settings=stored)
        goals = state.goals
        totals = macro_totals(state.today_entries)
        stats = analyze(entries, state.enough_history, now)
        quote = stored.get(KEY_DAILY_MOTIVATION)
        first_date = stored.get(KEY_FIRST_ENTRY_DATE) or first_entry_date(entries)
        report = stored.get(KEY_DAILY_REPORT) if isinstance(stored.get(KEY_DAILY_REPORT), dict) else {}
        return {
            "date": state.today,
            "days_logged": len(state.days),
            "learning_period_days": LEARNING_PERIOD_DAYS,
            "learning_period_complete": stored.get(KEY_LEARNING_PERIOD_COMPLETE) is True,
            "has_enough_data": state.enough_history,
            "is_first_day": not entries or first_date == state.today,
            "first_entry_date": first_date,
            "goals": {
                **goals.to_setting(),
                "proteinGrams": goals.protein_grams,
                "fatGrams": goals.fat_grams,
                "carbGrams": goals.carb_grams,
            },
            "today": {"protein": totals.protein, "fat": totals.fat, "carbs": totals.carbs},
            "daily_quote": quote.get("dailyQuote") if isinstance(quote, dict) and quote.get("date") == state.today else None,
            "report": self.ctx.report or report.get("dailyReport"),
            "report_error": self.ctx.report_error,
            "snack_error": self.ctx.snack_error,
            "thirty_day_stats": stats.to_dict() if stats else None,
            "unread_count": self.ledger.unread_count(),
            "alerts": self.ctx.drain_alerts(),
        }
