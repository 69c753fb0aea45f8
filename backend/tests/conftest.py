"""
Shared pytest fixtures for backend tests.
Uses a temp-file SQLite database per test for isolation.
"""
import pytest
import sqlite3
import sys
import os
from datetime import datetime
from zoneinfo import ZoneInfo

# Add backend to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import database
from database import TaskStore
from normalize import Normalizer
from reminders import LoggingReminderScheduler
from router import CommandRouter
from series import SeriesEngine
from timeparse import TimeResolver

from fakes import FakeLLMClient

TZ = ZoneInfo("UTC")
# Monday 2025-08-25, 10:00
NOW = datetime(2025, 8, 25, 10, 0, tzinfo=TZ)

SCHEMA = """
    CREATE TABLE tasks (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        is_done INTEGER DEFAULT 0,
        created_at TEXT NOT NULL,
        start_at TEXT,
        due_at TEXT,
        start_day TEXT NOT NULL,
        due_day TEXT,
        repeat_rule TEXT NOT NULL DEFAULT 'none',
        repeat_interval INTEGER,
        repeat_end TEXT,
        series_id TEXT,
        completed_at TEXT,
        priority TEXT DEFAULT 'none',
        notes TEXT DEFAULT '',
        labels TEXT DEFAULT '[]',
        duration_minutes INTEGER,
        reminder_offsets TEXT DEFAULT '[]'
    );

    CREATE TABLE deleted_tasks (
        id TEXT PRIMARY KEY,
        payload TEXT NOT NULL,
        deleted_at TEXT NOT NULL
    );
"""


@pytest.fixture
def test_db(monkeypatch, tmp_path):
    """
    Create an isolated test database for each test.
    Uses a temp file (not :memory:) because TaskStore opens new connections per operation.
    """
    db_path = str(tmp_path / "test.db")
    monkeypatch.setattr(database.TaskStore, "init_db", lambda self: None)

    # Create tables directly (skip alembic for tests)
    conn = sqlite3.connect(db_path)
    conn.executescript(SCHEMA)
    conn.commit()
    conn.close()

    yield db_path


@pytest.fixture
def store(test_db):
    return TaskStore(test_db)


@pytest.fixture
def scheduler():
    return LoggingReminderScheduler()


@pytest.fixture
def series(store, scheduler):
    return SeriesEngine(store, scheduler, tz=TZ)


@pytest.fixture
def normalizer():
    return Normalizer(TZ)


@pytest.fixture
def resolver():
    return TimeResolver(TZ)


@pytest.fixture
def router(store, series, normalizer, scheduler):
    """Router with the clock pinned to NOW."""
    return CommandRouter(store, series, normalizer, scheduler, TZ, clock=lambda: NOW)


@pytest.fixture
def fake_llm():
    return FakeLLMClient()


@pytest.fixture
def app_client(test_db, fake_llm):
    """
    Create a test client for the FastAPI app.
    init_db is patched by test_db, so alembic migrations are skipped.
    """
    from fastapi.testclient import TestClient
    import main
    from config import Settings

    app = main.create_app(Settings(database_path=test_db), llm=fake_llm, clock=lambda: NOW)
    with TestClient(app) as client:
        yield client
