"""
Test fixtures for the Citizenship Study Companion.

Provides app, client, auth_client, premium_client, admin_client and db
fixtures with file-based SQLite. TTS providers are mocked per test.
"""

from __future__ import annotations

import pytest
from datetime import datetime

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

PASSWORD = "TestPass123"


@pytest.fixture
def app(tmp_path):
    """Create app with file-based SQLite for testing."""
    from app import create_app
    from werkzeug.security import generate_password_hash

    db_file = str(tmp_path / "test.db")
    app = create_app({
        "TESTING": True,
        "DATABASE": db_file,
        "SECRET_KEY": "test-secret-key",
        "BASE_URL": "http://testserver",
    })

    with app.app_context():
        from database import init_db, run_migrations, get_db

        init_db()
        run_migrations()
        app._db_initialized = True

        # Seed users: 1 free student, 2 premium student, 3 admin
        db = get_db()
        now = datetime.now().isoformat()
        pw = generate_password_hash(PASSWORD)
        db.execute(
            "INSERT INTO users (id, name, username, email, password_hash, role, created_at) "
            "VALUES (1, 'Test Student', 'tester', 'test@example.com', ?, 'student', ?)",
            (pw, now),
        )
        db.execute(
            "INSERT INTO users (id, name, username, email, password_hash, role, created_at) "
            "VALUES (2, 'Premium Student', 'premium', 'premium@example.com', ?, 'student', ?)",
            (pw, now),
        )
        db.execute(
            "INSERT INTO users (id, name, username, email, password_hash, role, created_at) "
            "VALUES (3, 'Admin', 'admin', 'admin@example.com', ?, 'admin', ?)",
            (pw, now),
        )
        db.execute(
            "INSERT INTO user_subscriptions (user_id, plan, status, started_at, expires_at) "
            "VALUES (2, 'premium', 'active', ?, '')",
            (now,),
        )
        db.commit()

    yield app


@pytest.fixture
def client(app):
    """Unauthenticated test client."""
    return app.test_client()


def _logged_in_client(app, email):
    client = app.test_client()
    resp = client.post("/login", json={"email": email, "password": PASSWORD})
    assert resp.status_code == 200, resp.get_json()
    return client


@pytest.fixture
def auth_client(app):
    """Authenticated test client (free user 1)."""
    return _logged_in_client(app, "test@example.com")


@pytest.fixture
def premium_client(app):
    """Authenticated test client (premium user 2)."""
    return _logged_in_client(app, "premium@example.com")


@pytest.fixture
def admin_client(app):
    """Authenticated test client (admin user 3)."""
    return _logged_in_client(app, "admin@example.com")


@pytest.fixture
def db(app):
    """Direct database access for store tests."""
    with app.app_context():
        from database import get_db
        yield get_db()


@pytest.fixture
def questions(app):
    """A small bank of daily questions across categories and difficulties."""
    from db_stores import DailyQuestionStoreDB

    with app.app_context():
        ids = {
            "history_beginner": DailyQuestionStoreDB.add(
                "2026-03-01", "history", "beginner", "When was the Italian Republic founded?",
                ["1861", "1946", "1948"], "1946", "The referendum was held on 2 June 1946."),
            "history_advanced": DailyQuestionStoreDB.add(
                "2026-03-01", "history", "advanced", "Who was the first President of the Republic?",
                ["Enrico De Nicola", "Luigi Einaudi"], "Enrico De Nicola"),
            "culture_beginner": DailyQuestionStoreDB.add(
                "2026-03-01", "culture", "beginner", "What is the capital of Italy?",
                ["Milan", "Rome", "Turin"], "Rome"),
            "culture_intermediate": DailyQuestionStoreDB.add(
                "2026-02-20", "culture", "intermediate", "Where is the Uffizi Gallery?",
                ["Florence", "Venice"], "Florence"),
            "law_premium": DailyQuestionStoreDB.add(
                "2026-03-01", "law", "beginner", "How many articles does the Constitution have?",
                ["139", "150"], "139", is_premium=True),
        }
        yield ids
