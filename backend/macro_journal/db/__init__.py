from macro_journal.db.base import Base
from macro_journal.db.session import get_db, engine, SessionLocal
from macro_journal.db.tables import ALL_TABLE_NAMES, INSIGHT_STATE_TABLE_NAMES

__all__ = ["get_db", "engine", "SessionLocal", "Base", "ALL_TABLE_NAMES", "INSIGHT_STATE_TABLE_NAMES"]
