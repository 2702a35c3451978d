"""
Shared pytest fixtures for backend tests.
Uses a temp-file SQLite database per test for isolation.
"""
import pytest
import sqlite3
import sys
import os

# Add backend to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import database


class FakeCompletionClient:
    """CompletionClient that returns scripted replies and records every call."""

    def __init__(self, reply: str = ""):
        self.reply = reply
        self.error = None
        self.calls = []

    async def complete(self, messages, max_tokens, temperature):
        self.calls.append({
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        })
        if self.error is not None:
            raise self.error
        return self.reply

    @property
    def last_system(self) -> str:
        return self.calls[-1]["messages"][0]["content"]

    @property
    def last_user(self) -> str:
        return self.calls[-1]["messages"][1]["content"]


@pytest.fixture
def test_db(monkeypatch, tmp_path):
    """
    Create an isolated test database for each test.
    Uses a temp file (not :memory:) because database.py opens new connections per operation.
    """
    db_path = str(tmp_path / "test.db")
    monkeypatch.setattr(database, "DATABASE_PATH", db_path)
    monkeypatch.setattr(database, "init_db", lambda: None)

    # Create tables directly (skip alembic for tests)
    conn = sqlite3.connect(db_path)
    conn.executescript("""
        CREATE TABLE users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            email TEXT NOT NULL UNIQUE,
            name TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE projects (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            description TEXT,
            status TEXT NOT NULL DEFAULT 'active'
                CHECK (status IN ('active', 'completed', 'on-hold', 'cancelled')),
            user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE tasks (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            title TEXT NOT NULL,
            description TEXT,
            status TEXT NOT NULL DEFAULT 'todo'
                CHECK (status IN ('todo', 'in-progress', 'completed')),
            priority TEXT NOT NULL DEFAULT 'medium'
                CHECK (priority IN ('low', 'medium', 'high')),
            due_date TEXT,
            project_id INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );
    """)
    conn.commit()
    conn.close()

    yield db_path


@pytest.fixture
def user(test_db):
    return database.create_user_db("ada@example.com", "Ada")


@pytest.fixture
def other_user(test_db):
    return database.create_user_db("grace@example.com", "Grace")


@pytest.fixture
def fake_completion():
    return FakeCompletionClient()


@pytest.fixture
def app_client(test_db, user, fake_completion, monkeypatch):
    """
    Create a test client for the FastAPI app, authenticated as `user`.
    The completion client is replaced by fake_completion.
    """
    from fastapi.testclient import TestClient
    import main

    # Skip alembic in tests - tables already created by test_db fixture
    monkeypatch.setattr(database, "init_db", lambda: None)
    main.app.dependency_overrides[main.get_completion_client] = lambda: fake_completion

    with TestClient(main.app, headers={"X-User-Id": str(user.id)}) as client:
        yield client

    main.app.dependency_overrides.clear()
