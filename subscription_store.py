"""Subscription plans and premium gating.

Two plans: free and premium. Premium raises the daily question quota,
unlocks premium-only questions, streak protection and question reset.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app

from database import get_db

PLAN_ORDER = ["free", "premium"]

PLAN_DISPLAY = {
    "free": "Free",
    "premium": "Premium",
}


class SubscriptionStoreDB:
    """DB-backed subscription state for one user."""

    def __init__(self, user_id: int):
        self.user_id = user_id

    def _row(self):
        db = get_db()
        return db.execute(
            "SELECT plan, status, started_at, expires_at FROM user_subscriptions WHERE user_id = ?",
            (self.user_id,),
        ).fetchone()

    def current_plan(self, now: datetime | None = None) -> str:
        """Effective plan id; lapsed or cancelled premium counts as free."""
        row = self._row()
        if not row or row["plan"] != "premium" or row["status"] != "active":
            return "free"
        expires_at = row["expires_at"]
        if expires_at and datetime.fromisoformat(expires_at) <= (now or datetime.now()):
            return "free"
        return "premium"

    def is_premium(self, now: datetime | None = None) -> bool:
        return self.current_plan(now) == "premium"

    def upgrade(self, plan: str = "premium", expires_at: str = "") -> None:
        if plan not in PLAN_ORDER:
            raise ValueError(f"Invalid plan: {plan}")
        db = get_db()
        db.execute(
            "INSERT INTO user_subscriptions (user_id, plan, status, started_at, expires_at) "
            "VALUES (?, ?, 'active', ?, ?) "
            "ON CONFLICT(user_id) DO UPDATE SET plan = excluded.plan, status = 'active', "
            "started_at = excluded.started_at, expires_at = excluded.expires_at",
            (self.user_id, plan, datetime.now().isoformat(), expires_at),
        )
        db.commit()

    def cancel(self) -> None:
        db = get_db()
        db.execute(
            "UPDATE user_subscriptions SET status = 'cancelled' WHERE user_id = ?",
            (self.user_id,),
        )
        db.commit()

    def plan_limits(self) -> dict:
        """Quota and streak-protection limits for the user's current plan."""
        plan = self.current_plan()
        cfg = current_app.config
        if plan == "premium":
            daily_limit = cfg.get("DAILY_QUESTION_LIMIT_PREMIUM", 20)
            protection = cfg.get("STREAK_PROTECTION_DAYS", 3)
        else:
            daily_limit = cfg.get("DAILY_QUESTION_LIMIT_FREE", 5)
            protection = 0
        return {
            "plan": plan,
            "name": PLAN_DISPLAY[plan],
            "daily_question_limit": daily_limit,
            "streak_protection_days": protection,
            "premium_questions": plan == "premium",
        }


def is_premium_user(user_id: int | None) -> bool:
    if user_id is None:
        return False
    return SubscriptionStoreDB(user_id).is_premium()
