"""
Habit analyzer: 30-day eating-pattern statistics for the snack reminder.

Pure functions of (entries, now). Safe to recompute on every entries change.
"""
import re
from collections import Counter
from datetime import date, datetime, timedelta
from statistics import mean
from typing import Iterable

from macro_journal.core.constants import (
    DEFAULT_AVG_GAP_MINUTES,
    DEFAULT_TYPICAL_MEAL_TIME,
    HABIT_TOP_N,
    HABIT_WINDOW_DAYS,
    LEARNING_PERIOD_DAYS,
)
from macro_journal.services.types import JournalEntry, ThirtyDayStats

_CLOCK_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*([AaPp][Mm])\s*$")


def parse_clock_minutes(time_str: str | None) -> int | None:
    """'8:05 PM' -> 1205. 12 AM is midnight (0), 12 PM is noon (720). None if unparseable."""
    m = _CLOCK_RE.match(time_str or "")
    if not m:
        return None
    hours, minutes, period = int(m.group(1)), int(m.group(2)), m.group(3).upper()
    if not 1 <= hours <= 12 or minutes > 59:
        return None
    if period == "PM" and hours != 12:
        hours += 12
    if period == "AM" and hours == 12:
        hours = 0
    return hours * 60 + minutes


def format_clock(minutes: float) -> str:
    """Minutes since midnight -> 'h:mm AM|PM'. Hour wraps mod 24; 0 and 12 display as 12."""
    hour = int(minutes // 60) % 24
    minute = int(minutes % 60 + 0.5)
    if minute == 60:
        minute = 0
        hour = (hour + 1) % 24
    period = "PM" if hour >= 12 else "AM"
    display_hour = 12 if hour % 12 == 0 else hour % 12
    return f"{display_hour}:{minute:02d} {period}"


def parse_entry_date(value: str | None) -> date | None:
    try:
        return date.fromisoformat((value or "").strip())
    except ValueError:
        return None


def distinct_days(entries: Iterable[JournalEntry]) -> list[str]:
    """Distinct calendar days with at least one entry, in first-seen order."""
    return list(dict.fromkeys(e.date for e in entries if e.date))


def has_enough_history(entries: Iterable[JournalEntry]) -> bool:
    """True once the user has logged on LEARNING_PERIOD_DAYS distinct days."""
    return len(distinct_days(entries)) >= LEARNING_PERIOD_DAYS


def recent_entries(entries: Iterable[JournalEntry], now: datetime) -> list[JournalEntry]:
    """Entries dated within the trailing HABIT_WINDOW_DAYS (inclusive) of now's local date."""
    cutoff = now.date() - timedelta(days=HABIT_WINDOW_DAYS)
    out = []
    for e in entries:
        d = parse_entry_date(e.date)
        if d is not None and d >= cutoff:
            out.append(e)
    return out


def default_stats() -> ThirtyDayStats:
    return ThirtyDayStats(
        most_frequent_foods=[],
        least_frequent_foods=[],
        avg_gap_in_minutes=DEFAULT_AVG_GAP_MINUTES,
        typical_meal_time=DEFAULT_TYPICAL_MEAL_TIME,
    )


def compute_stats(entries: list[JournalEntry], now: datetime) -> ThirtyDayStats:
    """
    Food frequency, typical meal time and average inter-meal gap over the trailing 30 days.

    Frequency ties keep first-encounter order. The gap is averaged over distinct meal
    times, so several foods logged at the same clock time count as one meal.
    """
    recent = recent_entries(entries, now)
    if not recent:
        return default_stats()

    counts = Counter(e.food for e in recent)
    ranked = list(counts.items())
    most = [food for food, _ in sorted(ranked, key=lambda kv: -kv[1])[:HABIT_TOP_N]]
    least = [food for food, _ in sorted(ranked, key=lambda kv: kv[1])[:HABIT_TOP_N]]

    minutes = sorted(m for m in (parse_clock_minutes(e.time) for e in recent) if m is not None)
    typical = format_clock(mean(minutes)) if minutes else DEFAULT_TYPICAL_MEAL_TIME

    points = sorted(set(minutes))
    gaps = [b - a for a, b in zip(points, points[1:])]
    avg_gap = float(mean(gaps)) if gaps else DEFAULT_AVG_GAP_MINUTES

    return ThirtyDayStats(
        most_frequent_foods=most,
        least_frequent_foods=least,
        avg_gap_in_minutes=avg_gap,
        typical_meal_time=typical,
    )


def analyze(entries: list[JournalEntry], enough_history: bool, now: datetime) -> ThirtyDayStats | None:
    """Stats for the snack reminder; None until the learning period is over or with no entries."""
    if not enough_history or not entries:
        return None
    return compute_stats(entries, now)
