"""Device push token for showing insight notifications as pop-ups via APNs.

permission: the OS notification permission last reported by the device ('granted' | 'denied' | 'default').
"""
from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.sql import func

from macro_journal.db.base import Base


class PushToken(Base):
    __tablename__ = "push_tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    device_token = Column(String(256), nullable=False, unique=True, index=True)
    platform = Column(String(16), nullable=False, server_default="ios")
    permission = Column(String(16), nullable=False, server_default="default")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
