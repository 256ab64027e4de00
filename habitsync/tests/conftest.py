"""
Shared fixtures: an in-memory database, a fixed clock and scriptable
collaborators for the sync worker.
"""
import os
import tempfile

# Keep importing habitsync.main from touching /var/log or ./habitsync.db
os.environ.setdefault("HABITSYNC_LOG_DIR", tempfile.mkdtemp(prefix="habitsync-logs-"))
os.environ.setdefault("HABITSYNC_DATABASE_URL", "sqlite://")

import uuid
from contextlib import contextmanager
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from habitsync.database import Base
from habitsync import models  # noqa: F401  (registers tables)
from habitsync.exceptions import RemoteTerminalError, RemoteTransientError
from habitsync.repositories.completion_repository import CompletionRepository
from habitsync.repositories.local_store import SqlLocalStore
from habitsync.repositories.settings_repository import SettingsRepository
from habitsync.schemas import CompletionRecord
from habitsync.services.date_service import FixedClock
from habitsync.services.event_service import ProgressEventBus
from habitsync.services.habit_service import EntityLocks, HabitService
from habitsync.services.sync_service import SyncQueue, SyncWorker

# Wednesday, noon UTC: well outside the grace window
NOW = datetime(2024, 6, 12, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def default_settings(db_session):
    return SettingsRepository.get(db_session)


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def today():
    return date(2024, 6, 12)


@pytest.fixture
def yesterday(today):
    return today - timedelta(days=1)


@pytest.fixture
def store(db_session):
    return SqlLocalStore(db_session)


@pytest.fixture
def event_bus():
    return ProgressEventBus()


@pytest.fixture
def received_events(event_bus):
    """Every ProgressEvent emitted on the bus, in order"""
    received = []
    event_bus.subscribe(received.append)
    return received


@pytest.fixture
def habit_service(store, clock, default_settings, event_bus):
    return HabitService(store, clock, default_settings, event_bus, locks=EntityLocks())


@pytest.fixture
def sync_queue(store, clock, default_settings):
    return SyncQueue(store, clock, default_settings)


class FakeRemoteStore:
    """
    RemoteStore double. Scripted failures are consumed one per call;
    every call (successful or not) is recorded.
    """

    def __init__(self):
        self.calls = []
        self.failures = []
        self.fail_always = None

    def fail_next(self, count: int, error: Exception):
        self.failures.extend([error] * count)

    def _handle(self, kind, entity_type, payload):
        self.calls.append((kind, entity_type, payload.get("id")))
        if self.fail_always is not None:
            raise self.fail_always
        if self.failures:
            raise self.failures.pop(0)

    def create(self, entity_type, payload):
        self._handle("create", entity_type, payload)

    def update(self, entity_type, payload):
        self._handle("update", entity_type, payload)

    def delete(self, entity_type, payload):
        self._handle("delete", entity_type, payload)


class RecordingErrorReporter:
    def __init__(self):
        self.reports = []

    def report(self, operation, error):
        self.reports.append((operation, error))


@pytest.fixture
def remote():
    return FakeRemoteStore()


@pytest.fixture
def transient_error():
    return RemoteTransientError("connection reset")


@pytest.fixture
def terminal_error():
    return RemoteTerminalError("conflict: entity already exists")


@pytest.fixture
def error_reporter():
    return RecordingErrorReporter()


@pytest.fixture
def worker(remote, db_session, clock, error_reporter):
    @contextmanager
    def queue_factory():
        yield SyncQueue(SqlLocalStore(db_session), clock, SettingsRepository.get(db_session))

    return SyncWorker(remote, queue_factory, error_reporter)


@pytest.fixture
def add_completion(store, db_session, clock):
    """Write a completion for a logical date straight into the log"""
    def _add(habit, logical_date: date, user_id: str = None):
        occurred = datetime.combine(logical_date, datetime.min.time(), tzinfo=timezone.utc) + timedelta(hours=12)
        record = CompletionRecord(
            id=str(uuid.uuid4()),
            habit_id=habit.id,
            user_id=user_id or habit.user_id,
            occurred_at=occurred,
            logical_date=logical_date,
            xp_awarded=10,
            created_at=occurred
        )
        record, _ = CompletionRepository.append(store, record)
        db_session.commit()
        return record
    return _add
