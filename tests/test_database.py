"""Tests for database.py — schema creation, migrations, constraints."""

import sqlite3

import pytest

from database import MIGRATIONS, get_db, init_db, run_migrations


class TestSchema:
    """Verify all tables are created correctly."""

    def test_tables_exist(self, app):
        with app.app_context():
            db = get_db()
            tables = [r["name"] for r in db.execute(
                "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name"
            ).fetchall()]
            expected = [
                "audit_log", "content", "daily_questions", "daily_rewards", "newsletter_campaigns",
                "newsletter_subscriptions", "schema_version", "system_settings",
                "user_achievements", "user_gamification", "user_progress",
                "user_subscriptions", "user_weekly_challenges", "users",
                "weekly_challenges", "xp_events",
            ]
            for t in expected:
                assert t in tables, f"Table {t} not found"

    def test_wal_mode(self, app):
        with app.app_context():
            mode = get_db().execute("PRAGMA journal_mode").fetchone()[0]
            assert mode == "wal"

    def test_foreign_keys_enabled(self, app):
        with app.app_context():
            fk = get_db().execute("PRAGMA foreign_keys").fetchone()[0]
            assert fk == 1

    def test_seed_users_exist(self, db):
        rows = db.execute("SELECT id, role FROM users ORDER BY id").fetchall()
        assert [(r["id"], r["role"]) for r in rows] == [(1, "student"), (2, "student"), (3, "admin")]

    def test_progress_requires_existing_user(self, db):
        with pytest.raises(sqlite3.IntegrityError):
            db.execute(
                "INSERT INTO user_progress (user_id, score, progress_date, completed_at) "
                "VALUES (999, 50, '2026-03-01', '2026-03-01T10:00:00')"
            )


class TestMigrations:
    def test_all_versions_recorded(self, db):
        versions = {r["version"] for r in db.execute("SELECT version FROM schema_version")}
        assert {v for v, _ in MIGRATIONS} <= versions

    def test_time_spent_column_added(self, db):
        columns = [r["name"] for r in db.execute("PRAGMA table_info(user_progress)")]
        assert "time_spent" in columns

    def test_rerun_is_noop(self, app):
        with app.app_context():
            init_db()
            run_migrations()
            db = get_db()
            counts = db.execute(
                "SELECT version, COUNT(*) AS n FROM schema_version GROUP BY version"
            ).fetchall()
            assert all(r["n"] == 1 for r in counts)
