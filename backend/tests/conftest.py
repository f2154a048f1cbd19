"""Shared fixtures: in-memory SQLite record store, fake collaborators, a fixed clock."""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import macro_journal.models  # noqa: F401  (registers tables on Base.metadata)
from macro_journal.db.base import Base
from macro_journal.models.entry import Entry
from macro_journal.models.notification import Notification
from macro_journal.services.entry_repository import EntryRepository
from macro_journal.services.insight_engine import InsightEngine
from macro_journal.services.notification_ledger import NotificationLedger
from macro_journal.services.session_tracker import SessionContext
from macro_journal.services.settings_store import SettingsStore

USER_ID = "user-1"
OTHER_USER_ID = "user-2"


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeAuthProvider:
    """Returns queued responses (user dicts, None, or exceptions to raise), then `default`."""

    def __init__(self, responses=None, default=None):
        self.responses = list(responses or [])
        self.default = default
        self.calls = 0
        self.callbacks = []

    def get_user(self):
        self.calls += 1
        response = self.responses.pop(0) if self.responses else self.default
        if isinstance(response, Exception):
            raise response
        return response

    def on_auth_state_change(self, callback):
        self.callbacks.append(callback)

    def emit(self, event):
        for callback in self.callbacks:
            callback(event)


class FakeTextGenerator:
    """Per-endpoint canned text; an Exception value is raised instead."""

    def __init__(self, text="You've got this!", by_endpoint=None, on_generate=None):
        self.text = text
        self.by_endpoint = dict(by_endpoint or {})
        self.on_generate = on_generate
        self.calls = []

    def generate(self, endpoint, prompt):
        self.calls.append((endpoint, prompt))
        if self.on_generate is not None:
            self.on_generate(endpoint, prompt)
        response = self.by_endpoint.get(endpoint, self.text)
        if isinstance(response, Exception):
            raise response
        return response

    def calls_to(self, endpoint):
        return [p for e, p in self.calls if e == endpoint]


class FakeSurface:
    def __init__(self, permission="granted", after_request=None):
        self._permission = permission
        self._after_request = after_request
        self.requests = 0
        self.shown = []

    def permission(self, user_id):
        return self._permission

    def request_permission(self, user_id):
        self.requests += 1
        if self._after_request is not None:
            self._permission = self._after_request
        return self._permission

    def show(self, user_id, title, body):
        self.shown.append((user_id, title, body))
        return True


def no_sleep(seconds):
    pass


# --- Record store ---


@pytest.fixture
def db_engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


def add_entry(session_factory, date, time, food, protein=0, fat=0, carbs=0, user_id=USER_ID):
    with session_factory() as db:
        db.add(Entry(user_id=user_id, date=date, time=time, food=food, macros={"protein": protein, "fat": fat, "carbs": carbs}))
        db.commit()


def add_notification(session_factory, title, timestamp_ms, *, body="", notification_id=None, user_id=USER_ID, read=False):
    import uuid

    with session_factory() as db:
        row = Notification(
            id=notification_id or str(uuid.uuid4()),
            user_id=user_id,
            title=title,
            body=body,
            timestamp=timestamp_ms,
            read=read,
        )
        db.add(row)
        db.commit()
        return row.id


def titles_in_db(session_factory, title=None, user_id=USER_ID):
    with session_factory() as db:
        q = db.query(Notification).filter(Notification.user_id == user_id)
        if title is not None:
            q = q.filter(Notification.title == title)
        return [r.title for r in q.all()]


# --- Collaborators ---


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 3, 10, 15, 0, tzinfo=timezone.utc))


@pytest.fixture
def text():
    return FakeTextGenerator()


@pytest.fixture
def surface():
    return FakeSurface()


@pytest.fixture
def ctx():
    return SessionContext(user_id=USER_ID)


@pytest.fixture
def ledger(ctx, session_factory):
    return NotificationLedger(ctx, session_factory, sleep=no_sleep)


@pytest.fixture
def settings_store(ctx, session_factory):
    return SettingsStore(ctx, session_factory)


def build_engine(ctx, session_factory, text, surface, clock):
    return InsightEngine(
        ctx,
        EntryRepository(session_factory),
        SettingsStore(ctx, session_factory),
        NotificationLedger(ctx, session_factory, sleep=no_sleep),
        text,
        surface,
        clock=clock,
    )


@pytest.fixture
def engine(ctx, session_factory, text, surface, clock):
    return build_engine(ctx, session_factory, text, surface, clock)
