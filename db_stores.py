"""
DB-backed stores.

Thin persistence classes over the SQLite schema in database.py. Each store
is scoped to one user where that makes sense, mirroring how the rest of the
app looks data up. Stores raise sqlite3 errors; deciding what a failure
means is left to the service layer.
"""

from __future__ import annotations

import json
import secrets
from datetime import date, datetime
from typing import Optional

from database import get_db
from gamification import UserGamification, calculate_level


def _now() -> str:
    return datetime.now().isoformat()


# ── Gamification ──────────────────────────────────────────────────

class GamificationProfileDB:
    """The user_gamification row for one user."""

    COUNTERS = ("total_correct_answers", "total_completed_reviews")

    def __init__(self, user_id: int):
        self.user_id = user_id

    def _row(self):
        db = get_db()
        return db.execute(
            "SELECT * FROM user_gamification WHERE user_id = ?", (self.user_id,)
        ).fetchone()

    def ensure(self) -> None:
        db = get_db()
        db.execute(
            "INSERT OR IGNORE INTO user_gamification (user_id, created_at) VALUES (?, ?)",
            (self.user_id, _now()),
        )
        db.commit()

    def exists(self) -> bool:
        return self._row() is not None

    def load(self) -> UserGamification:
        """Return the record, creating a zeroed one on first access."""
        row = self._row()
        if row is None:
            self.ensure()
            row = self._row()
        return UserGamification(
            user_id=self.user_id,
            xp=row["xp"],
            level=row["level"],
            streak_days=row["streak_days"],
            longest_streak=row["longest_streak"],
            last_activity_date=row["last_activity_date"],
            weekly_xp=row["weekly_xp"],
            lifetime_xp=row["lifetime_xp"],
            total_correct_answers=row["total_correct_answers"],
            total_completed_reviews=row["total_completed_reviews"],
        )

    def add_xp(self, points: int, reason: str = "", now: str | None = None) -> tuple[int, int, int]:
        """Atomically add XP and recompute the level.

        Returns (old_level, new_xp, new_level).
        """
        self.ensure()
        db = get_db()
        now = now or _now()
        try:
            db.execute(
                "UPDATE user_gamification SET xp = xp + ?, weekly_xp = weekly_xp + ?, "
                "lifetime_xp = lifetime_xp + ?, "
                "last_activity_date = MAX(COALESCE(last_activity_date, ''), ?) WHERE user_id = ?",
                (points, points, points, now, self.user_id),
            )
            row = db.execute(
                "SELECT xp, level FROM user_gamification WHERE user_id = ?", (self.user_id,)
            ).fetchone()
            new_level = calculate_level(row["xp"])
            db.execute(
                "UPDATE user_gamification SET level = ? WHERE user_id = ?",
                (new_level, self.user_id),
            )
            db.execute(
                "INSERT INTO xp_events (user_id, points, reason, created_at) VALUES (?, ?, ?, ?)",
                (self.user_id, points, reason, now),
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        return row["level"], row["xp"], new_level

    def compare_and_set_streak(self, expected_last_activity: Optional[str],
                               streak_days: int, longest_streak: int, now: str) -> bool:
        """Write the streak only if last_activity_date is still what we read.

        last_activity_date only moves forward.
        """
        db = get_db()
        cur = db.execute(
            "UPDATE user_gamification SET streak_days = ?, longest_streak = ?, "
            "last_activity_date = MAX(COALESCE(last_activity_date, ''), ?) "
            "WHERE user_id = ? AND last_activity_date IS ?",
            (streak_days, longest_streak, now, self.user_id, expected_last_activity),
        )
        db.commit()
        return cur.rowcount == 1

    def increment(self, counter: str, amount: int = 1) -> int:
        if counter not in self.COUNTERS:
            raise ValueError(f"Unknown counter: {counter}")
        self.ensure()
        db = get_db()
        db.execute(
            f"UPDATE user_gamification SET {counter} = {counter} + ? WHERE user_id = ?",
            (amount, self.user_id),
        )
        db.commit()
        return self._row()[counter]

    def xp_history(self, limit: int = 20) -> list[dict]:
        db = get_db()
        rows = db.execute(
            "SELECT points, reason, created_at FROM xp_events WHERE user_id = ? "
            "ORDER BY id DESC LIMIT ?",
            (self.user_id, limit),
        ).fetchall()
        return [dict(r) for r in rows]

    @staticmethod
    def reset_weekly_xp() -> int:
        db = get_db()
        cur = db.execute("UPDATE user_gamification SET weekly_xp = 0 WHERE weekly_xp != 0")
        db.commit()
        return cur.rowcount

    @staticmethod
    def leaderboard(limit: int = 10, order_by: str = "xp") -> list[dict]:
        if order_by not in ("xp", "weekly_xp"):
            raise ValueError(f"Cannot order leaderboard by {order_by}")
        db = get_db()
        rows = db.execute(
            "SELECT g.user_id, g.xp, g.weekly_xp, g.level, g.streak_days, "
            "u.username, u.name, "
            "(SELECT COUNT(*) FROM user_achievements a "
            " WHERE a.user_id = g.user_id AND a.earned_at IS NOT NULL) AS achievements "
            "FROM user_gamification g JOIN users u ON u.id = g.user_id "
            f"ORDER BY g.{order_by} DESC, g.user_id ASC LIMIT ?",
            (limit,),
        ).fetchall()
        return [dict(r) for r in rows]


class AchievementStoreDB:
    """Per-user achievement progress rows."""

    def __init__(self, user_id: int):
        self.user_id = user_id

    def all(self) -> dict[str, dict]:
        db = get_db()
        rows = db.execute(
            "SELECT achievement_id, progress, earned_at FROM user_achievements WHERE user_id = ?",
            (self.user_id,),
        ).fetchall()
        return {r["achievement_id"]: dict(r) for r in rows}

    def get(self, achievement_id: str) -> Optional[dict]:
        db = get_db()
        row = db.execute(
            "SELECT achievement_id, progress, earned_at FROM user_achievements "
            "WHERE user_id = ? AND achievement_id = ?",
            (self.user_id, achievement_id),
        ).fetchone()
        return dict(row) if row else None

    def submit(self, achievement_id: str, progress: float, required_value: int,
               now: str | None = None) -> bool:
        """Raise stored progress to max(existing, progress).

        Returns True only for the call that stamps earned_at.
        """
        db = get_db()
        now = now or _now()
        try:
            db.execute(
                "INSERT OR IGNORE INTO user_achievements (user_id, achievement_id, progress, updated_at) "
                "VALUES (?, ?, 0, ?)",
                (self.user_id, achievement_id, now),
            )
            db.execute(
                "UPDATE user_achievements SET progress = MAX(progress, ?), updated_at = ? "
                "WHERE user_id = ? AND achievement_id = ?",
                (progress, now, self.user_id, achievement_id),
            )
            cur = db.execute(
                "UPDATE user_achievements SET earned_at = ? "
                "WHERE user_id = ? AND achievement_id = ? AND earned_at IS NULL AND progress >= ?",
                (now, self.user_id, achievement_id, required_value),
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        return cur.rowcount == 1

    def unearn(self, achievement_id: str) -> None:
        """Clear earned_at so a later submission can earn it again."""
        db = get_db()
        db.execute(
            "UPDATE user_achievements SET earned_at = NULL WHERE user_id = ? AND achievement_id = ?",
            (self.user_id, achievement_id),
        )
        db.commit()


class WeeklyChallengeStoreDB:
    """Weekly challenge definitions and per-user progress."""

    @staticmethod
    def active() -> Optional[dict]:
        db = get_db()
        row = db.execute(
            "SELECT * FROM weekly_challenges WHERE active = 1 ORDER BY id DESC LIMIT 1"
        ).fetchone()
        return dict(row) if row else None

    @staticmethod
    def create(title: str, goal: int, xp_reward: int, start_date: str, end_date: str,
               description: str = "", activate: bool = True) -> int:
        if goal <= 0:
            raise ValueError("Challenge goal must be positive")
        db = get_db()
        if activate:
            db.execute("UPDATE weekly_challenges SET active = 0 WHERE active = 1")
        cur = db.execute(
            "INSERT INTO weekly_challenges (title, description, goal, xp_reward, "
            "start_date, end_date, active) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (title, description, goal, xp_reward, start_date, end_date, 1 if activate else 0),
        )
        db.commit()
        return cur.lastrowid

    @staticmethod
    def deactivate_expired(today: date | None = None) -> int:
        db = get_db()
        today_str = (today or date.today()).isoformat()
        cur = db.execute(
            "UPDATE weekly_challenges SET active = 0 WHERE active = 1 AND end_date < ?",
            (today_str,),
        )
        db.commit()
        return cur.rowcount

    def __init__(self, user_id: int):
        self.user_id = user_id

    def progress(self, challenge_id: int) -> Optional[dict]:
        db = get_db()
        row = db.execute(
            "SELECT current_progress, completed, completed_at FROM user_weekly_challenges "
            "WHERE user_id = ? AND challenge_id = ?",
            (self.user_id, challenge_id),
        ).fetchone()
        return dict(row) if row else None

    def add_progress(self, challenge_id: int, delta: int) -> dict:
        db = get_db()
        try:
            db.execute(
                "INSERT OR IGNORE INTO user_weekly_challenges (user_id, challenge_id) VALUES (?, ?)",
                (self.user_id, challenge_id),
            )
            db.execute(
                "UPDATE user_weekly_challenges SET current_progress = current_progress + ? "
                "WHERE user_id = ? AND challenge_id = ?",
                (delta, self.user_id, challenge_id),
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        return self.progress(challenge_id)

    def mark_completed(self, challenge_id: int, goal: int, now: str | None = None) -> bool:
        """Flip completed once; True only for the call that flipped it."""
        db = get_db()
        cur = db.execute(
            "UPDATE user_weekly_challenges SET completed = 1, completed_at = ? "
            "WHERE user_id = ? AND challenge_id = ? AND completed = 0 AND current_progress >= ?",
            (now or _now(), self.user_id, challenge_id, goal),
        )
        db.commit()
        return cur.rowcount == 1

    def reopen(self, challenge_id: int) -> None:
        """Undo mark_completed when the reward could not be paid."""
        db = get_db()
        db.execute(
            "UPDATE user_weekly_challenges SET completed = 0, completed_at = NULL "
            "WHERE user_id = ? AND challenge_id = ?",
            (self.user_id, challenge_id),
        )
        db.commit()


# ── Progress & daily questions ────────────────────────────────────

class ProgressLogDB:
    """user_progress rows for one user."""

    def __init__(self, user_id: int):
        self.user_id = user_id

    def record(self, score: float, progress_date: date, content_id: int | None = None,
               daily_question_id: int | None = None, category: str = "",
               is_correct: bool | None = None, answer: str = "", time_spent: int = 0) -> int:
        """Insert a progress row.

        A second row for the same daily question on the same day raises
        sqlite3.IntegrityError.
        """
        db = get_db()
        cur = db.execute(
            "INSERT INTO user_progress (user_id, content_id, daily_question_id, category, score, "
            "is_correct, answer, progress_date, completed_at, time_spent) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (self.user_id, content_id, daily_question_id, category, score,
             None if is_correct is None else int(is_correct), answer,
             progress_date.isoformat(), _now(), time_spent),
        )
        db.commit()
        return cur.lastrowid

    def count_on(self, day: date) -> int:
        db = get_db()
        row = db.execute(
            "SELECT COUNT(*) AS n FROM user_progress WHERE user_id = ? AND progress_date = ?",
            (self.user_id, day.isoformat()),
        ).fetchone()
        return row["n"]

    def recent_scores(self, limit: int = 20) -> list[tuple[str, float]]:
        """(category, score) for the latest rows, newest first."""
        db = get_db()
        rows = db.execute(
            "SELECT COALESCE(c.category, p.category) AS category, p.score "
            "FROM user_progress p LEFT JOIN content c ON c.id = p.content_id "
            "WHERE p.user_id = ? ORDER BY p.completed_at DESC, p.id DESC LIMIT ?",
            (self.user_id, limit),
        ).fetchall()
        return [(r["category"] or "", r["score"]) for r in rows]

    def distinct_categories(self) -> int:
        db = get_db()
        row = db.execute(
            "SELECT COUNT(DISTINCT COALESCE(c.category, p.category)) AS n "
            "FROM user_progress p LEFT JOIN content c ON c.id = p.content_id "
            "WHERE p.user_id = ? AND COALESCE(c.category, p.category) != ''",
            (self.user_id,),
        ).fetchone()
        return row["n"]

    def daily_attempt(self, daily_question_id: int, day: date) -> Optional[dict]:
        db = get_db()
        row = db.execute(
            "SELECT id, daily_question_id, answer, is_correct, score, completed_at FROM user_progress "
            "WHERE user_id = ? AND daily_question_id = ? AND progress_date = ?",
            (self.user_id, daily_question_id, day.isoformat()),
        ).fetchone()
        return dict(row) if row else None

    def daily_attempt_on(self, day: date) -> Optional[dict]:
        """The daily question attempted on *day*, if any."""
        db = get_db()
        row = db.execute(
            "SELECT id, daily_question_id, answer, is_correct, score, completed_at FROM user_progress "
            "WHERE user_id = ? AND daily_question_id IS NOT NULL AND progress_date = ? "
            "ORDER BY id DESC LIMIT 1",
            (self.user_id, day.isoformat()),
        ).fetchone()
        return dict(row) if row else None

    def delete_daily_attempt(self, daily_question_id: int, day: date) -> bool:
        db = get_db()
        cur = db.execute(
            "DELETE FROM user_progress WHERE user_id = ? AND daily_question_id = ? AND progress_date = ?",
            (self.user_id, daily_question_id, day.isoformat()),
        )
        db.commit()
        return cur.rowcount > 0

    def claim_daily_reward(self, daily_question_id: int, day: date) -> bool:
        """True the first time a daily question pays out on *day*.

        Claims survive delete_daily_attempt, so a reset question can be
        answered again but not rewarded again.
        """
        db = get_db()
        cur = db.execute(
            "INSERT OR IGNORE INTO daily_rewards (user_id, daily_question_id, reward_date, created_at) "
            "VALUES (?, ?, ?, ?)",
            (self.user_id, daily_question_id, day.isoformat(), _now()),
        )
        db.commit()
        return cur.rowcount == 1

    def release_daily_reward(self, daily_question_id: int, day: date) -> None:
        db = get_db()
        db.execute(
            "DELETE FROM daily_rewards WHERE user_id = ? AND daily_question_id = ? AND reward_date = ?",
            (self.user_id, daily_question_id, day.isoformat()),
        )
        db.commit()


def _question_dict(row) -> Optional[dict]:
    if row is None:
        return None
    q = dict(row)
    q["options"] = json.loads(q.get("options") or "[]")
    q["is_premium"] = bool(q.get("is_premium"))
    return q


class DailyQuestionStoreDB:
    """Read/write access to the daily_questions table."""

    @staticmethod
    def add(question_date: str, category: str, difficulty: str, question_text: str,
            options: list[str], correct_answer: str, explanation: str = "",
            is_premium: bool = False) -> int:
        db = get_db()
        cur = db.execute(
            "INSERT INTO daily_questions (question_date, category, difficulty, question_text, "
            "options, correct_answer, explanation, is_premium, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (question_date, category, difficulty, question_text, json.dumps(options),
             correct_answer, explanation, int(is_premium), _now()),
        )
        db.commit()
        return cur.lastrowid

    @staticmethod
    def get(question_id: int) -> Optional[dict]:
        db = get_db()
        return _question_dict(db.execute(
            "SELECT * FROM daily_questions WHERE id = ?", (question_id,)
        ).fetchone())

    @staticmethod
    def find_exact(question_date: str, category: str, difficulty: str,
                   include_premium: bool) -> Optional[dict]:
        db = get_db()
        return _question_dict(db.execute(
            "SELECT * FROM daily_questions WHERE question_date = ? AND category = ? "
            "AND difficulty = ? AND (is_premium = 0 OR ?)",
            (question_date, category, difficulty, int(include_premium)),
        ).fetchone())

    @staticmethod
    def find_latest(category: str, difficulty: str, include_premium: bool) -> Optional[dict]:
        db = get_db()
        return _question_dict(db.execute(
            "SELECT * FROM daily_questions WHERE category = ? AND difficulty = ? "
            "AND (is_premium = 0 OR ?) ORDER BY question_date DESC, id DESC LIMIT 1",
            (category, difficulty, int(include_premium)),
        ).fetchone())

    @staticmethod
    def find_for_date(question_date: str, include_premium: bool) -> Optional[dict]:
        db = get_db()
        return _question_dict(db.execute(
            "SELECT * FROM daily_questions WHERE question_date = ? AND (is_premium = 0 OR ?) "
            "ORDER BY id ASC LIMIT 1",
            (question_date, int(include_premium)),
        ).fetchone())

    @staticmethod
    def find_any(include_premium: bool) -> Optional[dict]:
        db = get_db()
        return _question_dict(db.execute(
            "SELECT * FROM daily_questions WHERE (is_premium = 0 OR ?) "
            "ORDER BY question_date DESC, id DESC LIMIT 1",
            (int(include_premium),),
        ).fetchone())

    @staticmethod
    def categories(include_premium: bool) -> list[str]:
        db = get_db()
        rows = db.execute(
            "SELECT DISTINCT category FROM daily_questions WHERE (is_premium = 0 OR ?) "
            "ORDER BY category",
            (int(include_premium),),
        ).fetchall()
        return [r["category"] for r in rows]


# ── Settings & newsletter ─────────────────────────────────────────

class SettingsStoreDB:
    """JSON values in system_settings, keyed by name."""

    @staticmethod
    def get(key: str) -> Optional[dict]:
        db = get_db()
        row = db.execute("SELECT value FROM system_settings WHERE key = ?", (key,)).fetchone()
        if not row:
            return None
        return json.loads(row["value"])

    @staticmethod
    def put(key: str, value: dict) -> None:
        db = get_db()
        db.execute(
            "INSERT INTO system_settings (key, value, updated_at) VALUES (?, ?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at",
            (key, json.dumps(value), _now()),
        )
        db.commit()


class NewsletterStoreDB:
    """Subscriptions and sent campaigns."""

    @staticmethod
    def subscribe(email: str, tags: list[str] | None = None) -> dict:
        """Create or re-activate a subscription. Returns the row."""
        db = get_db()
        tags_json = json.dumps(sorted(set(tags or [])))
        existing = db.execute(
            "SELECT id FROM newsletter_subscriptions WHERE email = ?", (email,)
        ).fetchone()
        if existing:
            db.execute(
                "UPDATE newsletter_subscriptions SET status = 'active', tags = ? WHERE email = ?",
                (tags_json, email),
            )
        else:
            db.execute(
                "INSERT INTO newsletter_subscriptions (email, status, tags, token, created_at) "
                "VALUES (?, 'active', ?, ?, ?)",
                (email, tags_json, secrets.token_urlsafe(24), _now()),
            )
        db.commit()
        return NewsletterStoreDB.get(email)

    @staticmethod
    def get(email: str) -> Optional[dict]:
        db = get_db()
        row = db.execute(
            "SELECT * FROM newsletter_subscriptions WHERE email = ?", (email,)
        ).fetchone()
        if not row:
            return None
        sub = dict(row)
        sub["tags"] = json.loads(sub["tags"])
        return sub

    @staticmethod
    def unsubscribe(email: str, token: str) -> bool:
        db = get_db()
        cur = db.execute(
            "UPDATE newsletter_subscriptions SET status = 'unsubscribed' "
            "WHERE email = ? AND token = ? AND status != 'unsubscribed'",
            (email, token),
        )
        db.commit()
        return cur.rowcount == 1

    @staticmethod
    def active_recipients(tags: list[str] | None = None) -> list[dict]:
        db = get_db()
        rows = db.execute(
            "SELECT email, token, tags FROM newsletter_subscriptions WHERE status = 'active' "
            "ORDER BY id"
        ).fetchall()
        wanted = set(tags or [])
        recipients = []
        for r in rows:
            if wanted and not wanted.issubset(json.loads(r["tags"])):
                continue
            recipients.append({"email": r["email"], "token": r["token"]})
        return recipients

    @staticmethod
    def record_campaign(subject: str, content: str, tags: list[str],
                        recipient_count: int, status: str = "sent") -> int:
        db = get_db()
        cur = db.execute(
            "INSERT INTO newsletter_campaigns (subject, content, tags, recipient_count, status, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (subject, content, json.dumps(tags), recipient_count, status, _now()),
        )
        db.commit()
        return cur.lastrowid

    @staticmethod
    def mark_sent(emails: list[str]) -> None:
        if not emails:
            return
        db = get_db()
        now = _now()
        db.executemany(
            "UPDATE newsletter_subscriptions SET last_email_sent = ? WHERE email = ?",
            [(now, e) for e in emails],
        )
        db.commit()
