"""
Gamification bookkeeping — XP, levels, streaks, achievements, weekly
challenges and the leaderboard.

Write operations return result objects (see gamification.Outcome). A
database failure is logged and comes back as ``ok=False`` rather than as a
zeroed value, so "no XP awarded" and "award failed" stay distinguishable.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import asdict
from datetime import date, datetime
from functools import wraps

from db_stores import (
    AchievementStoreDB,
    GamificationProfileDB,
    ProgressLogDB,
    WeeklyChallengeStoreDB,
)
from gamification import (
    ACHIEVEMENTS,
    ACHIEVEMENTS_BY_ID,
    CORRECT_ANSWER_ACHIEVEMENTS,
    LEVEL_ACHIEVEMENTS,
    REVIEW_ACHIEVEMENTS,
    STREAK_ACHIEVEMENTS,
    XP_AWARDS,
    AchievementUpdate,
    ActivityUpdate,
    ChallengeUpdate,
    StreakUpdate,
    UserGamification,
    XpAward,
    days_between,
    streak_bonus_xp,
)
from subscription_store import SubscriptionStoreDB

logger = logging.getLogger(__name__)

STREAK_WRITE_ATTEMPTS = 3


def reports_failure(result_cls, action: str):
    """Turn sqlite errors into a logged ``result_cls.failure``."""
    def decorator(f):
        @wraps(f)
        def wrapper(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except sqlite3.Error as e:
                logger.exception("%s failed args=%s", action, args)
                return result_cls.failure(f"{action} failed: {e}")
        return wrapper
    return decorator


def activity_stamp(today: date | None) -> str:
    """ISO timestamp on *today* (or now), keeping the current time of day."""
    now = datetime.now()
    if today is None:
        return now.isoformat()
    return datetime.combine(today, now.time()).isoformat()


# ── Profile & XP ──────────────────────────────────────────────────

def get_user_gamification(user_id: int) -> UserGamification:
    """Full gamification snapshot, creating a zeroed record for new users."""
    profile = GamificationProfileDB(user_id).load()
    profile.achievements = get_user_achievements(user_id)
    profile.weekly_challenge = get_weekly_challenge(user_id)
    return profile


@reports_failure(XpAward, "Awarding XP")
def award_xp(user_id: int, points: int, reason: str = "", now: str | None = None) -> XpAward:
    """Add *points* and re-check level achievements.

    Level achievements are checked on every award, not only on a level up,
    so one whose payout failed is picked up again by the next award.
    """
    if isinstance(points, bool) or not isinstance(points, int) or points < 0:
        raise ValueError(f"XP points must be a non-negative integer, got {points!r}")

    old_level, new_xp, new_level = GamificationProfileDB(user_id).add_xp(points, reason, now)
    leveled_up = new_level > old_level
    logger.info("XP user=%s +%d (%s) total=%d level=%d", user_id, points, reason or "-", new_xp, new_level)

    if leveled_up:
        logger.info("Level up user=%s %d -> %d", user_id, old_level, new_level)
    check_level_achievements(user_id, new_level, now=now)

    return XpAward(new_xp=new_xp, new_level=new_level, leveled_up=leveled_up)


# ── Streaks ───────────────────────────────────────────────────────

@reports_failure(StreakUpdate, "Updating streak")
def update_streak(user_id: int, today: date | None = None, protection_days: int = 0) -> StreakUpdate:
    """Advance, keep or reset the daily streak for *today*.

    protection_days lets a premium user miss up to that many days without
    losing the streak. The write is conditional on the last_activity_date
    that was read, so a concurrent update forces a re-read instead of a
    double increment. A *today* earlier than the last activity leaves the
    streak alone.
    """
    today = today or date.today()
    stamp = activity_stamp(today)
    store = GamificationProfileDB(user_id)

    for _ in range(STREAK_WRITE_ATTEMPTS):
        profile = store.load()
        delta = days_between(profile.last_activity_date, today)

        new_streak = profile.streak_days
        increased = False
        if delta is None:
            new_streak = 1
        elif delta <= 0:
            # already active today; a first activity still starts the streak
            new_streak = max(new_streak, 1)
        elif delta <= protection_days + 1:
            new_streak += 1
            increased = True
        else:
            new_streak = 1

        longest = max(profile.longest_streak, new_streak)
        if store.compare_and_set_streak(profile.last_activity_date, new_streak, longest, stamp):
            break
        logger.warning("Concurrent streak write for user=%s, re-reading", user_id)
    else:
        return StreakUpdate.failure("Streak update kept conflicting with concurrent writers")

    milestone = None
    if increased:
        for achievement in STREAK_ACHIEVEMENTS:
            if new_streak == achievement.required_value:
                milestone = achievement.required_value
        # every streak achievement sees the new length, so a missed one
        # is earned on the next day of the streak
        _, errors = _feed(user_id, [a.id for a in STREAK_ACHIEVEMENTS], new_streak, stamp)
        bonus = award_xp(user_id, streak_bonus_xp(milestone), f"Daily streak: {new_streak} days", now=stamp)
        if not bonus.ok:
            errors.append(bonus.error)
        if errors:
            return StreakUpdate.failure("; ".join(errors))

    return StreakUpdate(
        current_streak=new_streak,
        increased=increased,
        milestone_reached=milestone is not None,
        milestone=milestone,
    )


def _touch_streak(user_id: int, today: date | None) -> StreakUpdate:
    """update_streak with the user's plan protection."""
    limits = SubscriptionStoreDB(user_id).plan_limits()
    return update_streak(user_id, today, protection_days=limits["streak_protection_days"])


# ── Achievements ──────────────────────────────────────────────────

def _achievement_view(achievement_id: str, stored: dict | None) -> dict:
    view = asdict(ACHIEVEMENTS_BY_ID[achievement_id])
    view["current_value"] = stored["progress"] if stored else 0
    view["unlocked_at"] = stored["earned_at"] if stored else None
    return view


def get_user_achievements(user_id: int) -> list[dict]:
    """The catalogue merged with this user's progress."""
    stored = AchievementStoreDB(user_id).all()
    return [_achievement_view(a.id, stored.get(a.id)) for a in ACHIEVEMENTS]


@reports_failure(AchievementUpdate, "Updating achievement progress")
def update_achievement_progress(user_id: int, achievement_id: str, progress: float,
                                now: str | None = None) -> AchievementUpdate:
    """Raise progress and pay the achievement's points the first time it is earned.

    If the points cannot be paid, earned_at is cleared again so the next
    submission earns and pays it.
    """
    definition = ACHIEVEMENTS_BY_ID.get(achievement_id)
    if definition is None:
        logger.warning("Unknown achievement %r for user=%s", achievement_id, user_id)
        return AchievementUpdate(achieved=False, achievement=None)

    store = AchievementStoreDB(user_id)
    just_earned = store.submit(achievement_id, progress, definition.required_value, now=now)
    if not just_earned:
        return AchievementUpdate(achieved=False, achievement=None)

    if definition.points:
        award = award_xp(user_id, definition.points, f"Achievement: {definition.title}", now=now)
        if not award.ok:
            store.unearn(achievement_id)
            return AchievementUpdate.failure(award.error)

    logger.info("Achievement user=%s earned %s", user_id, achievement_id)
    return AchievementUpdate(
        achieved=True,
        achievement=_achievement_view(achievement_id, store.get(achievement_id)),
    )


def check_level_achievements(user_id: int, level: int, now: str | None = None) -> list[str]:
    """Submit every level achievement the user now qualifies for."""
    earned = []
    for achievement in LEVEL_ACHIEVEMENTS:
        if level >= achievement.required_value:
            result = update_achievement_progress(user_id, achievement.id, achievement.required_value, now=now)
            if result.achieved:
                earned.append(achievement.id)
            elif not result.ok:
                logger.warning("Level achievement %s not paid for user=%s: %s",
                               achievement.id, user_id, result.error)
    return earned


def _feed(user_id: int, achievement_ids: list[str], value: float,
          now: str | None = None) -> tuple[list[dict], list[str]]:
    """Submit *value* to each achievement. Returns (unlocked, errors)."""
    unlocked, errors = [], []
    for achievement_id in achievement_ids:
        result = update_achievement_progress(user_id, achievement_id, value, now=now)
        if result.achieved:
            unlocked.append(result.achievement)
        elif not result.ok:
            errors.append(result.error)
    return unlocked, errors


def _activity(count: int, unlocked: list[dict], errors: list[str], xp_awarded: int = 0) -> ActivityUpdate:
    return ActivityUpdate(ok=not errors, error="; ".join(errors), count=count,
                          xp_awarded=xp_awarded, unlocked=unlocked)


@reports_failure(ActivityUpdate, "Recording correct answer")
def record_correct_answer(user_id: int, now: str | None = None) -> ActivityUpdate:
    total = GamificationProfileDB(user_id).increment("total_correct_answers")
    unlocked, errors = _feed(user_id, CORRECT_ANSWER_ACHIEVEMENTS, total, now)
    return _activity(total, unlocked, errors)


@reports_failure(ActivityUpdate, "Recording review")
def record_review(user_id: int, today: date | None = None) -> ActivityUpdate:
    # streak first: award_xp stamps last_activity_date
    streak = _touch_streak(user_id, today)
    if not streak.ok:
        return ActivityUpdate.failure(streak.error)
    stamp = activity_stamp(today)

    total = GamificationProfileDB(user_id).increment("total_completed_reviews")
    points = XP_AWARDS["review_completed"]
    award = award_xp(user_id, points, "Spaced repetition review", now=stamp)
    unlocked, errors = _feed(user_id, REVIEW_ACHIEVEMENTS, total, stamp)
    if not award.ok:
        errors.insert(0, award.error)
        points = 0
    return _activity(total, unlocked, errors, xp_awarded=points)


@reports_failure(ActivityUpdate, "Recording quiz result")
def record_quiz_result(user_id: int, correct: int, total: int, today: date | None = None) -> ActivityUpdate:
    if total < 0 or correct < 0 or correct > total:
        raise ValueError(f"Invalid quiz result {correct}/{total}")
    streak = _touch_streak(user_id, today)
    if not streak.ok:
        return ActivityUpdate.failure(streak.error)
    stamp = activity_stamp(today)

    errors = []
    points = XP_AWARDS["quiz_correct_answer"] * correct
    if points:
        award = award_xp(user_id, points, f"Quiz: {correct}/{total} correct", now=stamp)
        if not award.ok:
            errors.append(award.error)
            points = 0
    unlocked = []
    if total > 0 and correct == total:
        unlocked, feed_errors = _feed(user_id, ["perfect_quiz"], 1, stamp)
        errors += feed_errors
    return _activity(correct, unlocked, errors, xp_awarded=points)


@reports_failure(ActivityUpdate, "Recording studied category")
def record_category_studied(user_id: int, now: str | None = None) -> ActivityUpdate:
    categories = ProgressLogDB(user_id).distinct_categories()
    unlocked, errors = _feed(user_id, ["multi_category"], categories, now)
    return _activity(categories, unlocked, errors)


# ── Weekly challenge ──────────────────────────────────────────────

def get_weekly_challenge(user_id: int) -> dict | None:
    """The active challenge with this user's progress, or None."""
    challenge = WeeklyChallengeStoreDB.active()
    if challenge is None:
        return None
    progress = WeeklyChallengeStoreDB(user_id).progress(challenge["id"]) or {}
    return {
        "id": challenge["id"],
        "title": challenge["title"],
        "description": challenge["description"],
        "goal": challenge["goal"],
        "xp_reward": challenge["xp_reward"],
        "start_date": challenge["start_date"],
        "end_date": challenge["end_date"],
        "current_progress": progress.get("current_progress", 0),
        "completed": bool(progress.get("completed", 0)),
        "completed_at": progress.get("completed_at"),
    }


@reports_failure(ChallengeUpdate, "Updating weekly challenge progress")
def update_weekly_challenge_progress(user_id: int, delta: int, now: str | None = None) -> ChallengeUpdate:
    """Add *delta* to the user's progress; reward only on first completion.

    If the reward cannot be paid the challenge is reopened, so the next
    call completes and pays it.
    """
    if delta < 0:
        raise ValueError("Challenge progress delta must be non-negative")

    challenge = WeeklyChallengeStoreDB.active()
    if challenge is None:
        return ChallengeUpdate(completed=False, challenge=None)

    store = WeeklyChallengeStoreDB(user_id)
    store.add_progress(challenge["id"], delta)
    just_completed = store.mark_completed(challenge["id"], challenge["goal"], now=now)

    if just_completed:
        # the achievement pays at most once, so it goes before the reward
        achievement = update_achievement_progress(user_id, "weekly_challenge", 1, now=now)
        reward = None
        if achievement.ok:
            reward = award_xp(user_id, challenge["xp_reward"],
                              f"Completed weekly challenge: {challenge['title']}", now=now)
        if not achievement.ok or not reward.ok:
            store.reopen(challenge["id"])
            return ChallengeUpdate.failure(achievement.error or reward.error)
        logger.info("Weekly challenge %s completed by user=%s", challenge["id"], user_id)

    return ChallengeUpdate(completed=just_completed, challenge=get_weekly_challenge(user_id))


# ── Leaderboard ───────────────────────────────────────────────────

def get_leaderboard(limit: int = 10, period: str = "all") -> list[dict]:
    order_by = "weekly_xp" if period == "weekly" else "xp"
    rows = GamificationProfileDB.leaderboard(limit=limit, order_by=order_by)
    return [
        {
            "rank": rank,
            "user_id": r["user_id"],
            "username": r["username"] or "Anonymous",
            "display_name": r["name"] or None,
            "xp": r["xp"],
            "weekly_xp": r["weekly_xp"],
            "level": r["level"],
            "achievements": r["achievements"],
            "streak_days": r["streak_days"],
        }
        for rank, r in enumerate(rows, start=1)
    ]
