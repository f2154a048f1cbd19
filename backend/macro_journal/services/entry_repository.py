"""
Entry repository: a user's logged entries plus derived per-day aggregates.
Entries are written by the journal; this side only reads.
"""
import logging
from datetime import datetime
from typing import Callable, Iterable

from sqlalchemy.orm import Session

from macro_journal.models.entry import Entry
from macro_journal.services.habit_analyzer import parse_clock_minutes, parse_entry_date
from macro_journal.services.types import JournalEntry, MacroTotals

logger = logging.getLogger(__name__)


def _to_journal_entry(row: Entry) -> JournalEntry:
    return JournalEntry(date=row.date or "", time=row.time or "", food=row.food or "", macros=dict(row.macros or {}))


def list_entries(db: Session, user_id: str) -> list[JournalEntry]:
    """All entries for the user, oldest first (date, then insertion order)."""
    rows = (
        db.query(Entry)
        .filter(Entry.user_id == user_id)
        .order_by(Entry.date.asc(), Entry.id.asc())
        .all()
    )
    return [_to_journal_entry(r) for r in rows]


# --- Aggregates (pure) ---


def entries_on(entries: Iterable[JournalEntry], day: str) -> list[JournalEntry]:
    return [e for e in entries if e.date == day]


def macro_totals(entries: Iterable[JournalEntry]) -> MacroTotals:
    protein = fat = carbs = 0.0
    for e in entries:
        protein += e.grams("protein")
        fat += e.grams("fat")
        carbs += e.grams("carbs")
    return MacroTotals(protein=protein, fat=fat, carbs=carbs)


def first_entry_date(entries: Iterable[JournalEntry]) -> str | None:
    """Earliest valid YYYY-MM-DD among the entries."""
    dates = [d for d in (parse_entry_date(e.date) for e in entries) if d is not None]
    return min(dates).isoformat() if dates else None


def entry_timestamp_ms(entry: JournalEntry, now: datetime) -> int | None:
    """Epoch millis of the entry's date + clock time, in now's timezone."""
    day = parse_entry_date(entry.date)
    minutes = parse_clock_minutes(entry.time)
    if day is None or minutes is None:
        return None
    at = datetime(day.year, day.month, day.day, minutes // 60, minutes % 60, tzinfo=now.tzinfo)
    return int(at.timestamp() * 1000)


def latest_entry_timestamp_ms(entries: Iterable[JournalEntry], now: datetime) -> int:
    """Most recent entry instant among the given entries; 0 when there is none."""
    stamps = [t for t in (entry_timestamp_ms(e, now) for e in entries) if t is not None]
    return max(stamps) if stamps else 0


class EntryRepository:
    """Loads entries through short-lived sessions from session_factory."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def load(self, user_id: str) -> list[JournalEntry]:
        """Raises on record-store failure; callers decide how to surface it."""
        with self._session_factory() as db:
            entries = list_entries(db, user_id)
        logger.debug("Loaded %s entries for user %s", len(entries), user_id)
        return entries
