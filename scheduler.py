"""
Background scheduler — registers the periodic jobs.

Jobs:
  - Weekly reset (Monday 00:05): zero weekly_xp, deactivate expired challenges
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import date

from apscheduler.schedulers.background import BackgroundScheduler

from database import init_db, run_migrations
from db_stores import GamificationProfileDB, WeeklyChallengeStoreDB

logger = logging.getLogger(__name__)


def weekly_reset(app, today: date | None = None) -> dict:
    """Zero every user's weekly XP and retire challenges past their end date."""
    with app.app_context():
        if not getattr(app, "_db_initialized", False):
            init_db()
            run_migrations()
            app._db_initialized = True
        try:
            reset = GamificationProfileDB.reset_weekly_xp()
            expired = WeeklyChallengeStoreDB.deactivate_expired(today)
        except sqlite3.Error:
            logger.exception("Weekly reset failed")
            raise
    logger.info("Weekly reset: weekly_xp cleared for %d users, %d challenges expired", reset, expired)
    return {"users_reset": reset, "challenges_expired": expired}


def init_scheduler(app) -> BackgroundScheduler:
    """Start the background scheduler with all periodic jobs."""
    scheduler = BackgroundScheduler(daemon=True)

    scheduler.add_job(
        func=weekly_reset,
        args=[app],
        trigger="cron",
        day_of_week="mon",
        hour=0,
        minute=5,
        id="weekly_reset",
        replace_existing=True,
    )

    scheduler.start()
    app.logger.info("Scheduler started (weekly reset)")
    return scheduler
