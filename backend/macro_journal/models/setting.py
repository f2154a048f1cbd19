"""Per-user key/value setting. One row per (user_id, key); value is any JSON payload."""
from sqlalchemy import Column, Integer, String, UniqueConstraint

from macro_journal.db.base import Base
from macro_journal.models.types import JSONPayload


class Setting(Base):
    __tablename__ = "settings"
    __table_args__ = (
        UniqueConstraint("user_id", "key", name="uq_settings_user_key"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    key = Column(String(64), nullable=False)
    value = Column(JSONPayload, nullable=True)
