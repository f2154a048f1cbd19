from datetime import datetime, timedelta

from macro_journal.core.constants import (
    DAILY_MOTIVATION_TITLE,
    LEARNING_COMPLETE_TITLE,
    QUOTE_FALLBACK,
    REPORT_ENDPOINT,
    REPORT_ERROR,
    REPORT_FALLBACK,
    REPORT_NO_ENTRIES,
    SNACK_ENDPOINT,
    SNACK_ERROR,
    SNACK_TITLE,
    WELCOME_TITLE,
)
from macro_journal.core.errors import TextGenerationError
from macro_journal.models.notification import Notification
from macro_journal.services.insight_engine import build_report_prompt, build_snack_prompt, to_millis
from macro_journal.services.session_tracker import SessionContext
from macro_journal.services.settings_store import SettingsStore
from macro_journal.services.types import MacroGoals, MacroTotals, ThirtyDayStats

from tests.conftest import (
    OTHER_USER_ID,
    USER_ID,
    FakeSurface,
    FakeTextGenerator,
    add_entry,
    add_notification,
    build_engine,
    titles_in_db,
)


def log_days(session_factory, days, *, start="2024-03-06"):
    """One breakfast and one lunch per day for `days` consecutive days (lunch skipped on 2024-03-10)."""
    first = datetime.fromisoformat(start).date()
    for i in range(days):
        day = (first + timedelta(days=i)).isoformat()
        add_entry(session_factory, day, "8:00 AM", "oatmeal", protein=10, fat=5, carbs=50)
        if day != "2024-03-10":
            add_entry(session_factory, day, "12:00 PM", "chicken", protein=40, fat=10, carbs=0)


def setting(session_factory, key, ctx=None):
    return SettingsStore(ctx or SessionContext(USER_ID), session_factory).get(USER_ID, key)


# --- Welcome ---


def test_welcome_fires_exactly_once(engine, session_factory, surface):
    for _ in range(3):
        engine.evaluate("manual")
    assert titles_in_db(session_factory, WELCOME_TITLE) == [WELCOME_TITLE]
    assert setting(session_factory, "hasSentWelcome") is True
    assert [t for _, t, _ in surface.shown].count(WELCOME_TITLE) == 1


def test_welcome_ledger_guard_survives_lost_flag(session_factory, text, surface, clock):
    add_notification(session_factory, WELCOME_TITLE, to_millis(clock.now) - 1000)
    engine = build_engine(SessionContext(USER_ID), session_factory, text, surface, clock)
    result = engine.evaluate("user_resolved")
    assert "welcome" not in result.fired
    assert titles_in_db(session_factory, WELCOME_TITLE) == [WELCOME_TITLE]


def test_no_welcome_once_entries_exist(engine, session_factory):
    add_entry(session_factory, "2024-03-10", "8:00 AM", "eggs")
    result = engine.evaluate()
    assert "welcome" not in result.fired
    assert titles_in_db(session_factory, WELCOME_TITLE) == []


def test_failed_insert_does_not_set_flag(ctx, engine, db_engine, session_factory):
    ctx.notifications_loaded = True
    Notification.__table__.drop(db_engine)
    result = engine.evaluate()
    assert result.fired == ["daily_report"]
    assert setting(session_factory, "hasSentWelcome") is None
    assert setting(session_factory, "hasSentDailyMotivation") is None
    assert any(a["title"] == "Storage Error" for a in ctx.alerts)


# --- Daily motivation ---


def test_daily_motivation_once_per_day(ctx, engine, session_factory, clock, text):
    engine.evaluate()
    engine.evaluate()
    assert titles_in_db(session_factory, DAILY_MOTIVATION_TITLE) == [DAILY_MOTIVATION_TITLE]
    assert ctx.daily_quote == text.text
    stored = setting(session_factory, "hasSentDailyMotivation")
    assert stored == {"sent": True, "date": "2024-03-10", "dailyQuote": text.text}

    clock.advance(days=1)
    engine.evaluate("date_rollover")
    assert len(titles_in_db(session_factory, DAILY_MOTIVATION_TITLE)) == 2
    assert setting(session_factory, "hasSentDailyMotivation")["date"] == "2024-03-11"


def test_daily_motivation_guarded_across_sessions(session_factory, text, surface, clock):
    build_engine(SessionContext(USER_ID), session_factory, text, surface, clock).evaluate()
    clock.advance(hours=3)
    other_session = build_engine(SessionContext(USER_ID), session_factory, text, surface, clock)
    result = other_session.evaluate()
    assert "daily_motivation" not in result.fired
    assert other_session.ctx.daily_quote == text.text
    assert len(titles_in_db(session_factory, DAILY_MOTIVATION_TITLE)) == 1


def test_quote_failure_persists_fallback_and_sets_flag(ctx, session_factory, surface, clock):
    text = FakeTextGenerator(by_endpoint={SNACK_ENDPOINT: TextGenerationError("proxy down")})
    engine = build_engine(ctx, session_factory, text, surface, clock)
    engine.evaluate()
    engine.evaluate()

    with session_factory() as db:
        rows = db.query(Notification).filter(Notification.title == DAILY_MOTIVATION_TITLE).all()
    assert [r.body for r in rows] == [QUOTE_FALLBACK]
    assert setting(session_factory, "hasSentDailyMotivation")["date"] == "2024-03-10"
    assert len(text.calls_to(SNACK_ENDPOINT)) == 1


def test_quote_result_dropped_when_user_changes(session_factory, surface, clock):
    ctx = SessionContext(USER_ID)
    text = FakeTextGenerator(on_generate=lambda endpoint, prompt: ctx.reset(OTHER_USER_ID))
    engine = build_engine(ctx, session_factory, text, surface, clock)
    engine.evaluate()
    assert titles_in_db(session_factory, DAILY_MOTIVATION_TITLE) == []
    assert titles_in_db(session_factory, DAILY_MOTIVATION_TITLE, user_id=OTHER_USER_ID) == []


# --- Learning period ---


def test_learning_period_completes_exactly_once(ctx, engine, session_factory, text, surface, clock):
    log_days(session_factory, 5)
    first = engine.evaluate()
    assert "learning_period_complete" in first.fired
    assert setting(session_factory, "learningPeriodComplete") is True

    second = engine.evaluate()
    assert "learning_period_complete" not in second.fired
    fresh = build_engine(SessionContext(USER_ID), session_factory, text, surface, clock)
    assert "learning_period_complete" not in fresh.evaluate().fired
    assert titles_in_db(session_factory, LEARNING_COMPLETE_TITLE) == [LEARNING_COMPLETE_TITLE]


def test_learning_period_needs_five_distinct_days(engine, session_factory):
    log_days(session_factory, 4)
    assert "learning_period_complete" not in engine.evaluate().fired
    assert setting(session_factory, "learningPeriodComplete") is None


def test_learning_flag_repaired_from_ledger(session_factory, text, surface, clock):
    log_days(session_factory, 5)
    add_notification(session_factory, LEARNING_COMPLETE_TITLE, to_millis(clock.now) - 1000)
    engine = build_engine(SessionContext(USER_ID), session_factory, text, surface, clock)
    assert "learning_period_complete" not in engine.evaluate().fired
    assert setting(session_factory, "learningPeriodComplete") is True
    assert len(titles_in_db(session_factory, LEARNING_COMPLETE_TITLE)) == 1


# --- First entry date ---


def test_first_entry_date_recorded(ctx, engine, session_factory):
    add_entry(session_factory, "2024-03-08", "8:00 AM", "eggs")
    add_entry(session_factory, "2024-03-09", "8:00 AM", "eggs")
    engine.evaluate()
    assert setting(session_factory, "firstEntryDate") == "2024-03-08"


# --- Daily report ---


def test_report_without_entries_skips_generation(ctx, engine, text):
    engine.evaluate()
    assert ctx.report == REPORT_NO_ENTRIES
    assert ctx.report_error is None
    assert text.calls_to(REPORT_ENDPOINT) == []


def test_report_uses_yesterdays_entries_and_goals(ctx, session_factory, surface, clock):
    add_entry(session_factory, "2024-03-09", "12:00 PM", "grilled salmon", protein=34, fat=12, carbs=0)
    add_entry(session_factory, "2024-03-10", "8:00 AM", "bagel", protein=10, fat=2, carbs=55)
    text = FakeTextGenerator(by_endpoint={REPORT_ENDPOINT: "Great protein yesterday!"})
    engine = build_engine(ctx, session_factory, text, surface, clock)

    result = engine.evaluate()
    assert "daily_report" in result.fired
    prompt = text.calls_to(REPORT_ENDPOINT)[0]
    assert "grilled salmon" in prompt
    assert "bagel" not in prompt
    assert "- Protein: 35% (175g)" in prompt
    assert "- Fat: 30% (66.7g)" in prompt
    assert "- Protein: 34g" in prompt
    assert ctx.report == "Great protein yesterday!"
    assert setting(session_factory, "dailyReport") == {"dailyReport": "Great protein yesterday!", "dailyReportDate": "2024-03-10"}

    engine.evaluate()
    assert len(text.calls_to(REPORT_ENDPOINT)) == 1

    add_entry(session_factory, "2024-03-10", "1:00 PM", "apple", carbs=25)
    engine.evaluate("entries_loaded")
    assert len(text.calls_to(REPORT_ENDPOINT)) == 2


def test_report_recomputed_when_goals_change(ctx, session_factory, surface, clock):
    add_entry(session_factory, "2024-03-09", "12:00 PM", "salmon", protein=34)
    text = FakeTextGenerator()
    engine = build_engine(ctx, session_factory, text, surface, clock)
    engine.evaluate()
    engine.settings.set_macro_goals(USER_ID, MacroGoals(calorie_goal=2500))
    engine.evaluate("goals_changed")
    prompts = text.calls_to(REPORT_ENDPOINT)
    assert len(prompts) == 2
    assert "- Calories: 2500 kcal" in prompts[1]


def test_report_failure_shows_fallback(ctx, session_factory, surface, clock):
    add_entry(session_factory, "2024-03-09", "12:00 PM", "salmon", protein=34)
    text = FakeTextGenerator(by_endpoint={REPORT_ENDPOINT: TextGenerationError("500")})
    engine = build_engine(ctx, session_factory, text, surface, clock)
    engine.evaluate()
    assert ctx.report == REPORT_FALLBACK
    assert ctx.report_error == REPORT_ERROR
    engine.evaluate()
    assert len(text.calls_to(REPORT_ENDPOINT)) == 1


# --- Snack reminder ---


def test_snack_cooldown(ctx, session_factory, text, surface, clock):
    log_days(session_factory, 5)
    t0 = to_millis(clock.now)
    add_notification(session_factory, SNACK_TITLE, t0, body="earlier snack")
    engine = build_engine(ctx, session_factory, text, surface, clock)

    clock.advance(minutes=10)
    assert "snack_reminder" not in engine.evaluate().fired
    assert len(titles_in_db(session_factory, SNACK_TITLE)) == 1

    clock.advance(minutes=21)
    assert "snack_reminder" in engine.evaluate("timer").fired
    assert len(titles_in_db(session_factory, SNACK_TITLE)) == 2
    assert setting(session_factory, "lastSnackReminder") == to_millis(clock.now)
    assert (USER_ID, SNACK_TITLE) in [(u, t) for u, t, _ in surface.shown]


def test_snack_waits_for_a_new_meal(ctx, engine, session_factory, clock):
    log_days(session_factory, 5)
    assert "snack_reminder" in engine.evaluate("timer").fired

    clock.advance(minutes=34)
    assert "snack_reminder" not in engine.evaluate("timer").fired
    assert len(titles_in_db(session_factory, SNACK_TITLE)) == 1


def test_snack_needs_gap_longer_than_average(ctx, engine, session_factory, clock):
    log_days(session_factory, 5)
    add_entry(session_factory, "2024-03-10", "1:30 PM", "yogurt")
    assert "snack_reminder" not in engine.evaluate("timer").fired


def test_snack_needs_learning_period(engine, session_factory):
    log_days(session_factory, 4, start="2024-03-07")
    assert "snack_reminder" not in engine.evaluate("timer").fired


def test_snack_body_and_prompt(ctx, session_factory, surface, clock):
    log_days(session_factory, 5)
    text = FakeTextGenerator(by_endpoint={SNACK_ENDPOINT: "Try Greek yogurt with berries."})
    engine = build_engine(ctx, session_factory, text, surface, clock)
    engine.evaluate("timer")
    with session_factory() as db:
        row = db.query(Notification).filter(Notification.title == SNACK_TITLE).one()
    assert row.body == "It's 3:00 PM—time for a snack? Try Greek yogurt with berries."
    prompt = [p for p in text.calls_to(SNACK_ENDPOINT) if "snack" in p.lower() and "Current intake" in p][0]
    assert "Protein 10g/175g" in prompt
    assert "oatmeal" in prompt
    assert "2024-03-06" not in prompt


def test_snack_generation_failure_sets_error_without_notification(ctx, session_factory, surface, clock):
    log_days(session_factory, 5)

    class SnackFails(FakeTextGenerator):
        def generate(self, endpoint, prompt):
            if "Current intake" in prompt:
                raise TextGenerationError("timeout")
            return super().generate(endpoint, prompt)

    engine = build_engine(ctx, session_factory, SnackFails(), surface, clock)
    assert "snack_reminder" not in engine.evaluate("timer").fired
    assert ctx.snack_error == SNACK_ERROR
    assert titles_in_db(session_factory, SNACK_TITLE) == []


def test_snack_without_permission_leaves_info_note(ctx, session_factory, text, clock):
    log_days(session_factory, 5)
    surface = FakeSurface(permission="default", after_request="denied")
    engine = build_engine(ctx, session_factory, text, surface, clock)
    assert "snack_reminder" in engine.evaluate("timer").fired
    assert surface.requests == 1
    assert not any(t == SNACK_TITLE for _, t, _ in surface.shown)
    assert any(a["type"] == "info" for a in ctx.alerts)


# --- Pass control ---


def test_overlapping_pass_is_dropped(ctx, engine, session_factory):
    ctx.evaluation_lock.acquire()
    try:
        assert engine.evaluate() is None
    finally:
        ctx.evaluation_lock.release()
    assert titles_in_db(session_factory) == []


def test_no_user_no_pass(session_factory, text, surface, clock):
    engine = build_engine(SessionContext(), session_factory, text, surface, clock)
    assert engine.evaluate() is None


def test_pop_up_failure_does_not_block_rules(ctx, session_factory, clock):
    class BrokenSurface(FakeSurface):
        def permission(self, user_id):
            raise RuntimeError("surface crashed")

    engine = build_engine(ctx, session_factory, FakeTextGenerator(), BrokenSurface(), clock)
    result = engine.evaluate()
    assert result.fired == ["welcome", "daily_motivation", "daily_report"]


def test_dashboard(ctx, engine, session_factory):
    log_days(session_factory, 3, start="2024-03-08")
    engine.evaluate()
    board = engine.dashboard()
    assert board["days_logged"] == 3
    assert board["learning_period_complete"] is False
    assert board["is_first_day"] is False
    assert board["first_entry_date"] == "2024-03-08"
    assert board["today"] == {"protein": 10.0, "fat": 5.0, "carbs": 50.0}
    assert board["goals"]["proteinGrams"] == 175
    assert board["thirty_day_stats"] is None
    assert board["daily_quote"] == "You've got this!"
    assert board["unread_count"] == 1


# --- Prompts ---


def test_prompt_builders_format_numbers():
    report = build_report_prompt(MacroGoals(), MacroTotals(protein=20.25, fat=0, carbs=7), [])
    assert "Yesterday's Entries: No entries logged." in report
    assert "- Protein: 20.2g" in report or "- Protein: 20.3g" in report
    stats = ThirtyDayStats(["eggs"], ["kale"], 240.0, "12:45 PM")
    snack = build_snack_prompt(MacroGoals(), MacroTotals(protein=50), stats)
    assert "frequently eat eggs" in snack
    assert "tend to avoid kale" in snack
    assert "around 12:45 PM" in snack
