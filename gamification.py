"""
Gamification rules — level table, achievement catalogue, XP rewards.

Everything here is pure: no database access, no Flask context. The
DB-backed bookkeeping lives in gamification_service.py.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Optional


# ── Levels ────────────────────────────────────────────────────────

MAX_LEVEL = 30


@dataclass(frozen=True)
class Level:
    level: int
    min_xp: int
    max_xp: int
    title: str


def level_title(level: int) -> str:
    if level <= 5:
        return "Beginner"
    if level <= 10:
        return "Novice"
    if level <= 15:
        return "Intermediate"
    if level <= 20:
        return "Advanced"
    if level <= 25:
        return "Expert"
    return "Master"


def _min_xp(level: int) -> int:
    return math.floor(100 * 1.5 ** (level - 1))


LEVELS: list[Level] = [
    Level(level=n, min_xp=_min_xp(n), max_xp=_min_xp(n + 1) - 1, title=level_title(n))
    for n in range(1, MAX_LEVEL + 1)
]


def calculate_level(xp: int, levels: list[Level] | None = None) -> int:
    """Highest level whose min_xp is <= xp; level 1 when nothing matches."""
    table = LEVELS if levels is None else levels
    for entry in reversed(table):
        if xp >= entry.min_xp:
            return entry.level
    return 1


def level_details(level: int) -> Level:
    for entry in LEVELS:
        if entry.level == level:
            return entry
    return LEVELS[0]


def level_progress(xp: int) -> int:
    """Percentage progress toward the next level (100 at the top level)."""
    current = level_details(calculate_level(xp))
    if current.level == MAX_LEVEL:
        return 100
    start = 0 if current.level == 1 else current.min_xp
    span = current.max_xp + 1 - start
    return max(0, min(100, int((xp - start) / span * 100)))


# ── Achievements ──────────────────────────────────────────────────

@dataclass(frozen=True)
class Achievement:
    id: str
    title: str
    description: str
    icon: str
    category: str  # learning | streak | mastery | challenge
    points: int
    required_value: int


ACHIEVEMENTS: list[Achievement] = [
    Achievement("first_question", "First Steps", "Answer your first question",
                "trophy", "learning", 10, 1),
    Achievement("streak_3", "Consistency Beginner", "Maintain a 3-day learning streak",
                "flame", "streak", 30, 3),
    Achievement("streak_7", "Week Warrior", "Maintain a 7-day learning streak",
                "flame", "streak", 70, 7),
    Achievement("streak_30", "Monthly Devotion", "Maintain a 30-day learning streak",
                "flame", "streak", 300, 30),
    Achievement("questions_10", "Curious Mind", "Answer 10 questions correctly",
                "check-circle", "learning", 20, 10),
    Achievement("questions_50", "Knowledge Seeker", "Answer 50 questions correctly",
                "check-circle", "learning", 100, 50),
    Achievement("questions_100", "Knowledge Master", "Answer 100 questions correctly",
                "check-circle", "learning", 200, 100),
    Achievement("perfect_quiz", "Perfect Score", "Complete a quiz with 100% accuracy",
                "badge", "mastery", 50, 1),
    Achievement("reviews_10", "Review Novice", "Complete 10 spaced repetition reviews",
                "repeat", "learning", 30, 10),
    Achievement("reviews_50", "Review Expert", "Complete 50 spaced repetition reviews",
                "repeat", "learning", 150, 50),
    Achievement("level_5", "Rising Star", "Reach level 5",
                "star", "mastery", 50, 5),
    Achievement("level_10", "Learning Prodigy", "Reach level 10",
                "star", "mastery", 100, 10),
    Achievement("level_20", "Learning Legend", "Reach level 20",
                "star", "mastery", 200, 20),
    Achievement("weekly_challenge", "Challenge Accepted", "Complete a weekly challenge",
                "award", "challenge", 100, 1),
    Achievement("multi_category", "Renaissance Learner", "Study in at least 3 different categories",
                "circle-check", "learning", 40, 3),
]

ACHIEVEMENTS_BY_ID: dict[str, Achievement] = {a.id: a for a in ACHIEVEMENTS}

STREAK_ACHIEVEMENTS = [a for a in ACHIEVEMENTS if a.category == "streak"]
LEVEL_ACHIEVEMENTS = [a for a in ACHIEVEMENTS if a.category == "mastery" and a.id.startswith("level_")]
CORRECT_ANSWER_ACHIEVEMENTS = ["first_question", "questions_10", "questions_50", "questions_100"]
REVIEW_ACHIEVEMENTS = ["reviews_10", "reviews_50"]

STREAK_MILESTONES = sorted(a.required_value for a in STREAK_ACHIEVEMENTS)

XP_AWARDS = {
    "daily_question_correct": 20,
    "daily_question_attempt": 5,
    "practice_activity": 5,
    "review_completed": 5,
    "quiz_correct_answer": 2,
    "streak_day": 10,
    "streak_milestone_multiplier": 20,
}


def streak_bonus_xp(milestone: int | None) -> int:
    if milestone:
        return XP_AWARDS["streak_milestone_multiplier"] * milestone
    return XP_AWARDS["streak_day"]


# ── Dates ─────────────────────────────────────────────────────────

def to_date(value) -> Optional[date]:
    """Coerce a date, datetime or ISO string to a calendar date."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.fromisoformat(str(value)).date()


def days_between(first, second) -> Optional[int]:
    """Calendar days from first to second, negative when second is earlier.

    Time of day is ignored.
    """
    d1, d2 = to_date(first), to_date(second)
    if d1 is None or d2 is None:
        return None
    return (d2 - d1).days


# ── Results ───────────────────────────────────────────────────────
# Each service call returns one of these instead of a zeroed value, so
# callers can tell "nothing happened" from "the call failed".

@dataclass
class Outcome:
    ok: bool = True
    error: str = ""

    @classmethod
    def failure(cls, error: str):
        return cls(ok=False, error=error)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class XpAward(Outcome):
    new_xp: int = 0
    new_level: int = 0
    leveled_up: bool = False


@dataclass
class StreakUpdate(Outcome):
    current_streak: int = 0
    increased: bool = False
    milestone_reached: bool = False
    milestone: Optional[int] = None


@dataclass
class AchievementUpdate(Outcome):
    achieved: bool = False
    achievement: Optional[dict] = None


@dataclass
class ChallengeUpdate(Outcome):
    completed: bool = False
    challenge: Optional[dict] = None


@dataclass
class ActivityUpdate(Outcome):
    count: int = 0
    xp_awarded: int = 0
    unlocked: list[dict] = field(default_factory=list)


@dataclass
class UserGamification:
    user_id: int
    xp: int = 0
    level: int = 1
    streak_days: int = 0
    longest_streak: int = 0
    last_activity_date: Optional[str] = None
    weekly_xp: int = 0
    lifetime_xp: int = 0
    total_correct_answers: int = 0
    total_completed_reviews: int = 0
    achievements: list[dict] = field(default_factory=list)
    weekly_challenge: Optional[dict] = None

    @property
    def level_title(self) -> str:
        return level_details(self.level).title

    @property
    def level_progress_pct(self) -> int:
        return level_progress(self.xp)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["level_title"] = self.level_title
        data["level_progress_pct"] = self.level_progress_pct
        return data
