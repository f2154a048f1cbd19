"""Generated notification: the persisted ledger row.

id: uuid4 string minted by the insight engine. timestamp: creation instant in epoch millis.
Only `read` is ever updated; rows are deleted on user dismissal.
"""
from sqlalchemy import BigInteger, Boolean, Column, Index, String, Text

from macro_journal.db.base import Base


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_user_timestamp", "user_id", "timestamp"),
    )

    id = Column(String(36), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    title = Column(String(256), nullable=False)
    body = Column(Text, nullable=False, default="")
    timestamp = Column(BigInteger, nullable=False)
    read = Column(Boolean, nullable=False, default=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "body": self.body,
            "timestamp": self.timestamp,
            "read": bool(self.read),
            "user_id": self.user_id,
        }
