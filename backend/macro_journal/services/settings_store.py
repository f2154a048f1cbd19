"""
Settings store: typed get/upsert over the per-user key/value settings table.
One row per (user_id, key); value is any JSON payload.
"""
import logging
from typing import Any, Callable

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from macro_journal.core.constants import KEY_MACRO_GOALS
from macro_journal.models.setting import Setting
from macro_journal.services.session_tracker import SessionContext
from macro_journal.services.types import MacroGoals

logger = logging.getLogger(__name__)


def get_setting(db: Session, user_id: str, key: str) -> Setting | None:
    return db.query(Setting).filter(Setting.user_id == user_id, Setting.key == key).first()


def get_settings(db: Session, user_id: str, keys: list[str] | None = None) -> dict[str, Any]:
    """All (or the given) settings for the user as {key: value}."""
    q = db.query(Setting).filter(Setting.user_id == user_id)
    if keys:
        q = q.filter(Setting.key.in_(keys))
    return {r.key: r.value for r in q.all()}


def upsert_setting(db: Session, user_id: str, key: str, value: Any) -> None:
    """Insert or update (user_id, key). Commits; a concurrent insert of the same key is retried as an update."""
    row = get_setting(db, user_id, key)
    if row:
        row.value = value
        db.commit()
        return
    db.add(Setting(user_id=user_id, key=key, value=value))
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        row = get_setting(db, user_id, key)
        if row is None:
            raise
        row.value = value
        db.commit()


class SettingsStore:
    """Settings for the session's user, cached in ctx.settings after a successful read or write."""

    def __init__(self, ctx: SessionContext, session_factory: Callable[[], Session]):
        self.ctx = ctx
        self._session_factory = session_factory

    def load(self, user_id: str) -> dict[str, Any]:
        """Read every setting for the user. Raises on record-store failure."""
        with self._session_factory() as db:
            values = get_settings(db, user_id)
        with self.ctx.state_lock:
            if self.ctx.is_current(user_id):
                self.ctx.settings = dict(values)
        return values

    def get(self, user_id: str, key: str, default: Any = None) -> Any:
        """Fresh read of one key. Raises on record-store failure."""
        with self._session_factory() as db:
            row = get_setting(db, user_id, key)
            value = row.value if row is not None else None
        if value is None:
            return default
        with self.ctx.state_lock:
            if self.ctx.is_current(user_id):
                self.ctx.settings[key] = value
        return value

    def upsert(self, user_id: str, key: str, value: Any) -> bool:
        """Persist key=value. On failure: logged, in-app error alert, cache untouched; returns False."""
        try:
            with self._session_factory() as db:
                upsert_setting(db, user_id, key, value)
        except SQLAlchemyError as e:
            logger.error("Saving setting %s for user %s failed: %s", key, user_id, e)
            if self.ctx.is_current(user_id):
                self.ctx.push_alert("Storage Error", f"Could not save your {key} setting. Please try again later.")
            return False
        with self.ctx.state_lock:
            if self.ctx.is_current(user_id):
                self.ctx.settings[key] = value
        return True

    # --- Typed helpers ---

    def get_macro_goals(self, user_id: str) -> MacroGoals:
        return MacroGoals.from_setting(self.get(user_id, KEY_MACRO_GOALS))

    def set_macro_goals(self, user_id: str, goals: MacroGoals) -> bool:
        return self.upsert(user_id, KEY_MACRO_GOALS, goals.to_setting())
