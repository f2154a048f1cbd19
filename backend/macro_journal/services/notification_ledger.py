"""
Notification ledger: the persisted, deduplicated log of generated notifications.

The ledger is the authoritative "has X already happened" signal for the insight rules.
In-memory state (ctx.notifications) only changes after the record store confirms a write.
"""
import logging
import time
import uuid
from datetime import date, datetime, tzinfo
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from macro_journal.core.errors import is_transient_error
from macro_journal.core.retry import call_with_backoff
from macro_journal.models.notification import Notification
from macro_journal.services.session_tracker import SessionContext
from macro_journal.services.types import AppNotification

logger = logging.getLogger(__name__)


def new_notification(user_id: str, title: str, body: str, timestamp_ms: int) -> AppNotification:
    return {
        "id": str(uuid.uuid4()),
        "title": title,
        "body": body,
        "timestamp": int(timestamp_ms),
        "read": False,
        "user_id": user_id,
    }


# --- Record-store operations (one session each) ---


def list_notifications(db: Session, user_id: str, *, limit: int | None = None, unread_only: bool = False) -> list[AppNotification]:
    """Notifications for the user, newest first."""
    q = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        q = q.filter(Notification.read.is_(False))
    q = q.order_by(Notification.timestamp.desc())
    if limit:
        q = q.limit(limit)
    return [r.to_dict() for r in q.all()]


def insert_notification(db: Session, notification: AppNotification) -> None:
    db.add(
        Notification(
            id=notification["id"],
            user_id=notification["user_id"],
            title=notification["title"],
            body=notification["body"],
            timestamp=notification["timestamp"],
            read=bool(notification.get("read", False)),
        )
    )
    db.commit()


def set_notification_read(db: Session, user_id: str, notification_id: str) -> bool:
    """Mark one notification read. False when it does not exist or belongs to another user."""
    row = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == user_id)
        .first()
    )
    if not row:
        return False
    if not row.read:
        row.read = True
        db.commit()
    return True


def set_all_read(db: Session, user_id: str) -> int:
    updated = (
        db.query(Notification)
        .filter(Notification.user_id == user_id, Notification.read.is_(False))
        .update({Notification.read: True}, synchronize_session=False)
    )
    db.commit()
    return updated


def delete_notification(db: Session, user_id: str, notification_id: str) -> bool:
    """Delete (dismiss) one notification. False when it does not exist or belongs to another user."""
    deleted = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == user_id)
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted > 0


def count_unread(db: Session, user_id: str) -> int:
    return (
        db.query(Notification)
        .filter(Notification.user_id == user_id, Notification.read.is_(False))
        .count()
    )


def local_date_of(timestamp_ms: int, tz: tzinfo | None) -> date:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=tz).date()


class NotificationLedger:
    """In-memory mirror of the user's notifications, kept in ctx.notifications (newest first)."""

    def __init__(
        self,
        ctx: SessionContext,
        session_factory: Callable[[], Session],
        *,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.ctx = ctx
        self._session_factory = session_factory
        self._sleep = sleep

    def _query(self, user_id: str) -> list[AppNotification]:
        with self._session_factory() as db:
            return list_notifications(db, user_id)

    def load(self, user_id: str) -> list[AppNotification] | None:
        """
        Load the user's notifications into the context. Transient failures (401, rate limit,
        dropped connection) are retried with backoff, then degrade to an empty list.
        Returns None when another load for this session is already running.
        """
        if not self.ctx.ledger_lock.acquire(blocking=False):
            logger.debug("Ledger load already in flight for %s; dropping", user_id)
            return None
        try:
            try:
                rows = call_with_backoff(
                    lambda: self._query(user_id),
                    should_retry=is_transient_error,
                    sleep=self._sleep,
                    label="Notification load",
                )
            except Exception as e:
                logger.warning("Loading notifications for %s failed; using empty list: %s", user_id, e)
                rows = []
                if self.ctx.is_current(user_id):
                    self.ctx.push_alert("Error Loading Notifications", "Could not load your notifications. Please refresh or try again later.")
            with self.ctx.state_lock:
                if not self.ctx.is_current(user_id):
                    logger.debug("Discarding notifications for %s; session moved on", user_id)
                    return None
                self.ctx.notifications = rows
                self.ctx.notifications_loaded = True
            return rows
        finally:
            self.ctx.ledger_lock.release()

    def append(self, notification: AppNotification) -> bool:
        """Persist, then add to memory. On failure: logged, in-app error alert, memory unchanged."""
        user_id = notification["user_id"]
        try:
            with self._session_factory() as db:
                insert_notification(db, notification)
        except SQLAlchemyError as e:
            logger.error("Saving notification %r for %s failed: %s", notification["title"], user_id, e)
            if self.ctx.is_current(user_id):
                self.ctx.push_alert("Storage Error", f"Could not save the notification \"{notification['title']}\".")
            return False
        with self.ctx.state_lock:
            if self.ctx.is_current(user_id):
                self.ctx.notifications.insert(0, notification)
        return True

    def mark_read(self, user_id: str, notification_id: str) -> bool:
        if not self.ctx.is_current(user_id):
            return False
        try:
            with self._session_factory() as db:
                ok = set_notification_read(db, user_id, notification_id)
        except SQLAlchemyError as e:
            logger.error("Marking notification %s read failed: %s", notification_id, e)
            self.ctx.push_alert("Storage Error", "Could not mark the notification as read.")
            return False
        if ok:
            with self.ctx.state_lock:
                for n in self.ctx.notifications:
                    if n["id"] == notification_id:
                        n["read"] = True
        return ok

    def mark_all_read(self, user_id: str) -> int:
        if not self.ctx.is_current(user_id):
            return 0
        try:
            with self._session_factory() as db:
                updated = set_all_read(db, user_id)
        except SQLAlchemyError as e:
            logger.error("Marking all notifications read failed: %s", e)
            self.ctx.push_alert("Storage Error", "Could not mark your notifications as read.")
            return 0
        with self.ctx.state_lock:
            for n in self.ctx.notifications:
                n["read"] = True
        return updated

    def dismiss(self, user_id: str, notification_id: str) -> bool:
        if not self.ctx.is_current(user_id):
            return False
        try:
            with self._session_factory() as db:
                ok = delete_notification(db, user_id, notification_id)
        except SQLAlchemyError as e:
            logger.error("Dismissing notification %s failed: %s", notification_id, e)
            self.ctx.push_alert("Storage Error", "Could not dismiss the notification.")
            return False
        if ok:
            with self.ctx.state_lock:
                self.ctx.notifications = [n for n in self.ctx.notifications if n["id"] != notification_id]
        return ok

    # --- Dedup queries over the loaded list ---

    def has_title(self, title: str) -> bool:
        with self.ctx.state_lock:
            return any(n["title"] == title for n in self.ctx.notifications)

    def find_title_on(self, title: str, day: date, tz: tzinfo | None) -> AppNotification | None:
        """A notification with this title created on the given local calendar day, if any."""
        with self.ctx.state_lock:
            for n in self.ctx.notifications:
                if n["title"] == title and local_date_of(n["timestamp"], tz) == day:
                    return n
        return None

    def latest_with_title(self, title: str) -> AppNotification | None:
        with self.ctx.state_lock:
            matches = [n for n in self.ctx.notifications if n["title"] == title]
        return max(matches, key=lambda n: n["timestamp"]) if matches else None

    def unread_count(self) -> int:
        with self.ctx.state_lock:
            return sum(1 for n in self.ctx.notifications if not n["read"])
