"""
Daily question selection and answering.

Each signed-in user gets one question per day, picked from their weakest
category at a difficulty matching their recent scores. Answering it
records a progress row, advances the streak and awards XP.
"""

from __future__ import annotations

import logging
import random
import sqlite3
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from flask import current_app

from db_stores import DailyQuestionStoreDB, ProgressLogDB
from gamification import XP_AWARDS, Outcome
from gamification_service import (
    activity_stamp,
    award_xp,
    record_category_studied,
    record_correct_answer,
    reports_failure,
    update_streak,
    update_weekly_challenge_progress,
)
from subscription_store import SubscriptionStoreDB

logger = logging.getLogger(__name__)

DIFFICULTIES = ("beginner", "intermediate", "advanced")

NOT_ATTEMPTED = "not_attempted"
ANSWERED_CORRECT = "answered_correct"
ANSWERED_INCORRECT = "answered_incorrect"


# ── Focus selection ───────────────────────────────────────────────

def category_means(scores: list[tuple[str, float]]) -> dict[str, float]:
    """Mean score per category; rows without a category are ignored."""
    buckets: dict[str, list[float]] = defaultdict(list)
    for category, score in scores:
        if category:
            buckets[category].append(score)
    return {cat: sum(vals) / len(vals) for cat, vals in buckets.items()}


def weakest_category(scores: list[tuple[str, float]]) -> Optional[str]:
    means = category_means(scores)
    if not means:
        return None
    # lowest mean, ties by name
    return min(means, key=lambda cat: (means[cat], cat))


def difficulty_for(mean_score: Optional[float]) -> str:
    if mean_score is None or mean_score < 60:
        return "beginner"
    if mean_score > 80:
        return "advanced"
    return "intermediate"


def choose_focus(user_id: int, today: date, include_premium: bool) -> tuple[Optional[str], str]:
    """(category, difficulty) to serve this user today."""
    window = current_app.config.get("PROGRESS_HISTORY_WINDOW", 20)
    scores = ProgressLogDB(user_id).recent_scores(window)
    if scores:
        overall = sum(score for _, score in scores) / len(scores)
        category = weakest_category(scores)
        if category is not None:
            return category, difficulty_for(overall)

    categories = DailyQuestionStoreDB.categories(include_premium)
    if not categories:
        return None, "beginner"
    rng = random.Random(f"{user_id}:{today.isoformat()}")
    return rng.choice(categories), "beginner"


def pick_question(today: date, category: Optional[str], difficulty: Optional[str],
                  include_premium: bool) -> tuple[Optional[dict], str]:
    """Walk the lookup cascade. Returns (question, match)."""
    day = today.isoformat()
    if category is None:
        question = DailyQuestionStoreDB.find_for_date(day, include_premium)
        if question:
            return question, "exact"
    else:
        question = DailyQuestionStoreDB.find_exact(day, category, difficulty, include_premium)
        if question:
            return question, "exact"
        question = DailyQuestionStoreDB.find_latest(category, difficulty, include_premium)
        if question:
            return question, "category"

    question = DailyQuestionStoreDB.find_any(include_premium)
    if question:
        return question, "any"
    return None, "none"


def public_question(question: Optional[dict], reveal: bool = False) -> Optional[dict]:
    """Question payload for the client; the answer stays hidden until attempted."""
    if question is None:
        return None
    shown = dict(question)
    if not reveal:
        shown.pop("correct_answer", None)
        shown.pop("explanation", None)
    return shown


# ── Results ───────────────────────────────────────────────────────

@dataclass
class DailyQuestionView(Outcome):
    question: Optional[dict] = None
    status: str = NOT_ATTEMPTED
    match: str = "none"
    focus_category: Optional[str] = None
    difficulty: Optional[str] = None
    answered_today: int = 0
    daily_limit: Optional[int] = None
    is_limit_reached: bool = False
    is_premium: bool = False
    attempt: Optional[dict] = None


@dataclass
class AnswerResult(Outcome):
    code: str = ""
    correct: bool = False
    correct_answer: str = ""
    explanation: str = ""
    status: str = NOT_ATTEMPTED
    xp: Optional[dict] = None
    streak: Optional[dict] = None
    unlocked: list[dict] = field(default_factory=list)
    challenge_completed: bool = False
    rewarded: bool = False


@dataclass
class ResetResult(Outcome):
    code: str = ""
    reset: bool = False


@dataclass
class ProgressResult(Outcome):
    progress_id: Optional[int] = None
    answered_today: int = 0
    xp: Optional[dict] = None
    streak: Optional[dict] = None
    unlocked: list[dict] = field(default_factory=list)


def _status_of(attempt: Optional[dict]) -> str:
    if attempt is None:
        return NOT_ATTEMPTED
    return ANSWERED_CORRECT if attempt["is_correct"] else ANSWERED_INCORRECT


# ── Operations ────────────────────────────────────────────────────

@reports_failure(DailyQuestionView, "Loading daily question")
def get_daily_question(user_id: Optional[int], today: date | None = None) -> DailyQuestionView:
    """Today's question for *user_id*, or for an anonymous visitor when None."""
    today = today or date.today()

    if user_id is None:
        question, match = pick_question(today, None, None, include_premium=False)
        return DailyQuestionView(question=public_question(question), match=match)

    subscription = SubscriptionStoreDB(user_id)
    limits = subscription.plan_limits()
    premium = limits["premium_questions"]
    progress = ProgressLogDB(user_id)
    answered_today = progress.count_on(today)

    # An answered question stays today's question even if the focus moves.
    attempted = progress.daily_attempt_on(today)
    if attempted is not None:
        question = DailyQuestionStoreDB.get(attempted["daily_question_id"])
        category, difficulty, match = question["category"], question["difficulty"], "exact"
    else:
        category, difficulty = choose_focus(user_id, today, premium)
        question, match = pick_question(today, category, difficulty, premium)

    limit = limits["daily_question_limit"]
    view = DailyQuestionView(
        match=match,
        focus_category=category,
        difficulty=difficulty,
        answered_today=answered_today,
        daily_limit=limit,
        is_limit_reached=answered_today >= limit,
        is_premium=limits["plan"] == "premium",
    )
    if question is None:
        return view

    attempt = attempted if attempted is not None else progress.daily_attempt(question["id"], today)
    view.status = _status_of(attempt)
    if view.status == NOT_ATTEMPTED and view.is_limit_reached:
        view.match = "none"
        return view

    view.question = public_question(question, reveal=attempt is not None)
    view.attempt = attempt
    return view


def answers_match(given: str, expected: str) -> bool:
    return (given or "").strip().casefold() == (expected or "").strip().casefold()


@reports_failure(AnswerResult, "Submitting daily answer")
def submit_answer(user_id: int, answer: str, today: date | None = None,
                  question_id: int | None = None) -> AnswerResult:
    """Answer today's question once; drives streak, XP and achievements."""
    today = today or date.today()
    view = get_daily_question(user_id, today)
    if not view.ok:
        return AnswerResult.failure(view.error)

    if view.question is None:
        if view.is_limit_reached:
            return AnswerResult(ok=False, code="limit_reached",
                                error="Daily question limit reached")
        return AnswerResult(ok=False, code="no_question", error="No question available")
    if question_id is not None and question_id != view.question["id"]:
        return AnswerResult(ok=False, code="question_mismatch",
                            error="That is not today's question")
    if view.status != NOT_ATTEMPTED:
        return AnswerResult(ok=False, code="already_answered", status=view.status,
                            error="Today's question has already been answered")

    question = DailyQuestionStoreDB.get(view.question["id"])
    correct = answers_match(answer, question["correct_answer"])
    progress = ProgressLogDB(user_id)
    try:
        progress.record(
            score=100 if correct else 0,
            progress_date=today,
            daily_question_id=question["id"],
            category=question["category"],
            is_correct=correct,
            answer=answer,
        )
    except sqlite3.IntegrityError:
        # another request answered first
        return AnswerResult(ok=False, code="already_answered",
                            error="Today's question has already been answered")

    limits = SubscriptionStoreDB(user_id).plan_limits()
    # streak first: award_xp stamps last_activity_date
    streak = update_streak(user_id, today, protection_days=limits["streak_protection_days"])
    stamp = activity_stamp(today)

    xp = None
    unlocked = []
    challenge_completed = False
    # an answer given again after a reset is recorded but not rewarded again
    rewarded = progress.claim_daily_reward(question["id"], today)
    if rewarded:
        if correct:
            award = award_xp(user_id, XP_AWARDS["daily_question_correct"], "Daily question correct", now=stamp)
        else:
            award = award_xp(user_id, XP_AWARDS["daily_question_attempt"], "Daily question attempt", now=stamp)
        xp = award.to_dict()
        if not award.ok:
            progress.release_daily_reward(question["id"], today)
            rewarded = False
        elif correct:
            unlocked += record_correct_answer(user_id, now=stamp).unlocked
            challenge_completed = update_weekly_challenge_progress(user_id, 1, now=stamp).completed
    unlocked += record_category_studied(user_id, now=stamp).unlocked

    logger.info("Daily answer user=%s question=%s correct=%s rewarded=%s",
                user_id, question["id"], correct, rewarded)
    return AnswerResult(
        correct=correct,
        correct_answer=question["correct_answer"],
        explanation=question["explanation"],
        status=ANSWERED_CORRECT if correct else ANSWERED_INCORRECT,
        xp=xp,
        streak=streak.to_dict(),
        unlocked=unlocked,
        challenge_completed=challenge_completed,
        rewarded=rewarded,
    )


@reports_failure(ResetResult, "Resetting daily question")
def reset_question(user_id: int, today: date | None = None) -> ResetResult:
    """Premium: forget today's answer so the question can be tried again."""
    today = today or date.today()
    if not SubscriptionStoreDB(user_id).is_premium():
        return ResetResult(ok=False, code="premium_required",
                           error="Resetting the daily question requires Premium")

    progress = ProgressLogDB(user_id)
    attempted = progress.daily_attempt_on(today)
    if attempted is None:
        return ResetResult(reset=False)
    progress.delete_daily_attempt(attempted["daily_question_id"], today)
    logger.info("Daily question reset user=%s question=%s", user_id, attempted["daily_question_id"])
    return ResetResult(reset=True)


@reports_failure(ProgressResult, "Recording progress")
def record_progress(user_id: int, score: float, content_id: int | None = None,
                    category: str | None = None, time_spent: int = 0,
                    today: date | None = None) -> ProgressResult:
    """Log a practice activity. It counts toward the quota and category means."""
    if isinstance(score, bool) or not isinstance(score, (int, float)) or not 0 <= score <= 100:
        raise ValueError("Score must be a number between 0 and 100")
    if time_spent < 0:
        raise ValueError("time_spent must be non-negative")

    today = today or date.today()
    progress = ProgressLogDB(user_id)
    progress_id = progress.record(
        score=score,
        progress_date=today,
        content_id=content_id,
        category=category or "",
        time_spent=time_spent,
    )

    limits = SubscriptionStoreDB(user_id).plan_limits()
    streak = update_streak(user_id, today, protection_days=limits["streak_protection_days"])
    stamp = activity_stamp(today)
    xp = award_xp(user_id, XP_AWARDS["practice_activity"], "Practice activity", now=stamp)
    unlocked = record_category_studied(user_id, now=stamp).unlocked

    return ProgressResult(
        progress_id=progress_id,
        answered_today=progress.count_on(today),
        xp=xp.to_dict(),
        streak=streak.to_dict(),
        unlocked=unlocked,
    )
