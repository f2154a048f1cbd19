"""Journal entry: one logged food with its macros. Written by the journal UI; read-only to the insight engine.

date: YYYY-MM-DD (local calendar day). time: 12-hour clock with AM/PM, e.g. "8:05 PM".
macros: {"protein": g, "fat": g, "carbs": g}; values may arrive as numbers or numeric strings.
"""
from sqlalchemy import Column, Integer, String

from macro_journal.db.base import Base
from macro_journal.models.types import JSONPayload


class Entry(Base):
    __tablename__ = "entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    date = Column(String(10), nullable=False, index=True)
    time = Column(String(16), nullable=False)
    food = Column(String(256), nullable=False)
    macros = Column(JSONPayload, nullable=False, default=dict)
