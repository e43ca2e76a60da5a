"""Tests for gamification_service.py — XP, streaks, achievements, challenges."""

import sqlite3
from datetime import date, timedelta
from unittest.mock import patch

import pytest

from db_stores import AchievementStoreDB, GamificationProfileDB, ProgressLogDB, WeeklyChallengeStoreDB
from gamification_service import (
    award_xp,
    check_level_achievements,
    get_leaderboard,
    get_user_achievements,
    get_user_gamification,
    get_weekly_challenge,
    record_category_studied,
    record_correct_answer,
    record_quiz_result,
    record_review,
    update_achievement_progress,
    update_streak,
    update_weekly_challenge_progress,
)

DAY = date(2026, 3, 10)


def _set_last_activity(user_id, when, streak, longest=None):
    store = GamificationProfileDB(user_id)
    current = store.load()
    assert store.compare_and_set_streak(current.last_activity_date, streak,
                                        longest if longest is not None else streak, when)


class TestAwardXp:
    def test_basic(self, app):
        with app.app_context():
            result = award_xp(1, 40, "test")
            assert result.ok
            assert result.new_xp == 40
            assert result.new_level == 1
            assert not result.leveled_up

    def test_additive(self, app):
        with app.app_context():
            award_xp(1, 30)
            award_xp(1, 50)
            award_xp(2, 80)
            assert GamificationProfileDB(1).load().xp == GamificationProfileDB(2).load().xp == 80

    def test_zero_points_allowed(self, app):
        with app.app_context():
            result = award_xp(1, 0)
            assert result.ok and result.new_xp == 0

    @pytest.mark.parametrize("points", [-1, 1.5, True, "10"])
    def test_invalid_points(self, app, points):
        with app.app_context():
            with pytest.raises(ValueError):
                award_xp(1, points)

    def test_level_up_unlocks_level_achievements(self, app):
        with app.app_context():
            # level 5 starts at 506 xp
            result = award_xp(1, 506)
            assert result.leveled_up
            assert result.new_level == 5
            assert AchievementStoreDB(1).get("level_5")["earned_at"] is not None
            # the achievement's own 50 points landed on top
            assert GamificationProfileDB(1).load().xp == 556

    def test_db_failure_reported_not_zeroed(self, app):
        with app.app_context():
            with patch.object(GamificationProfileDB, "add_xp", side_effect=sqlite3.OperationalError("locked")):
                result = award_xp(1, 10)
            assert result.ok is False
            assert "locked" in result.error


class TestUpdateStreak:
    def test_first_activity_starts_streak(self, app):
        with app.app_context():
            result = update_streak(1, DAY)
            assert result.ok
            assert result.current_streak == 1
            assert not result.increased

    def test_same_day_twice_is_stable(self, app):
        with app.app_context():
            update_streak(1, DAY)
            second = update_streak(1, DAY)
            assert second.current_streak == 1
            assert not second.increased
            assert GamificationProfileDB(1).load().xp == 0

    def test_consecutive_day_increments(self, app):
        with app.app_context():
            _set_last_activity(1, (DAY - timedelta(days=1)).isoformat() + "T09:00:00", 1)
            result = update_streak(1, DAY)
            assert result.increased
            assert result.current_streak == 2
            assert not result.milestone_reached
            # flat daily bonus
            assert GamificationProfileDB(1).load().xp == 10

    def test_milestone(self, app):
        with app.app_context():
            _set_last_activity(1, (DAY - timedelta(days=1)).isoformat(), 2)
            result = update_streak(1, DAY)
            assert result.current_streak == 3
            assert result.milestone_reached
            assert result.milestone == 3
            assert AchievementStoreDB(1).get("streak_3")["earned_at"] is not None
            # 3 * 20 bonus plus the achievement's 30 points
            assert GamificationProfileDB(1).load().xp == 90

    def test_gap_resets(self, app):
        with app.app_context():
            _set_last_activity(1, (DAY - timedelta(days=3)).isoformat(), 9)
            result = update_streak(1, DAY)
            assert result.current_streak == 1
            assert not result.increased
            assert GamificationProfileDB(1).load().longest_streak == 9

    def test_protection_days_bridge_gap(self, app):
        with app.app_context():
            _set_last_activity(2, (DAY - timedelta(days=3)).isoformat(), 9)
            result = update_streak(2, DAY, protection_days=3)
            assert result.increased
            assert result.current_streak == 10

    def test_protection_has_a_limit(self, app):
        with app.app_context():
            _set_last_activity(2, (DAY - timedelta(days=5)).isoformat(), 9)
            result = update_streak(2, DAY, protection_days=3)
            assert result.current_streak == 1

    def test_longest_streak_tracks_max(self, app):
        with app.app_context():
            _set_last_activity(1, (DAY - timedelta(days=1)).isoformat(), 5, longest=5)
            update_streak(1, DAY)
            assert GamificationProfileDB(1).load().longest_streak == 6

    def test_concurrent_writer_forces_reread(self, app):
        with app.app_context():
            _set_last_activity(1, (DAY - timedelta(days=1)).isoformat(), 1)
            real_cas = GamificationProfileDB.compare_and_set_streak
            calls = []

            def racing_cas(self, expected, streak, longest, now):
                if not calls:
                    # another request lands first
                    real_cas(self, expected, streak, longest, now)
                calls.append(streak)
                return real_cas(self, expected, streak, longest, now)

            with patch.object(GamificationProfileDB, "compare_and_set_streak", racing_cas):
                result = update_streak(1, DAY)
            assert len(calls) == 2
            assert result.current_streak == 2
            assert not result.increased
            assert GamificationProfileDB(1).load().streak_days == 2

    def test_gives_up_after_repeated_conflicts(self, app):
        with app.app_context():
            with patch.object(GamificationProfileDB, "compare_and_set_streak", return_value=False):
                result = update_streak(1, DAY)
            assert result.ok is False

    def test_earlier_day_does_not_advance(self, app):
        with app.app_context():
            later = (DAY + timedelta(days=2)).isoformat() + "T09:00:00"
            _set_last_activity(1, later, 4)
            result = update_streak(1, DAY)
            assert result.ok
            assert not result.increased
            assert result.current_streak == 4
            profile = GamificationProfileDB(1).load()
            assert profile.last_activity_date == later
            assert profile.xp == 0

    def test_missed_milestone_caught_up_next_day(self, app):
        with app.app_context():
            _set_last_activity(1, (DAY - timedelta(days=1)).isoformat(), 3)
            result = update_streak(1, DAY)
            assert result.current_streak == 4
            assert not result.milestone_reached
            assert AchievementStoreDB(1).get("streak_3")["earned_at"] is not None
            # flat bonus plus streak_3's 30 points
            assert GamificationProfileDB(1).load().xp == 40

    def test_failed_bonus_is_reported(self, app):
        with app.app_context():
            _set_last_activity(1, (DAY - timedelta(days=1)).isoformat(), 1)
            with patch.object(GamificationProfileDB, "add_xp", side_effect=sqlite3.OperationalError("locked")):
                result = update_streak(1, DAY)
            assert result.ok is False
            assert "locked" in result.error


class TestAchievements:
    def test_unknown_id(self, app):
        with app.app_context():
            result = update_achievement_progress(1, "nope", 100)
            assert result.ok
            assert result.achieved is False
            assert result.achievement is None

    def test_earned_once_and_points_once(self, app):
        with app.app_context():
            first = update_achievement_progress(1, "reviews_10", 10)
            second = update_achievement_progress(1, "reviews_10", 12)
            assert first.achieved
            assert first.achievement["unlocked_at"] is not None
            assert not second.achieved
            assert GamificationProfileDB(1).load().xp == 30

    def test_lower_progress_does_not_decrease(self, app):
        with app.app_context():
            update_achievement_progress(1, "questions_50", 20)
            update_achievement_progress(1, "questions_50", 5)
            achievements = {a["id"]: a for a in get_user_achievements(1)}
            assert achievements["questions_50"]["current_value"] == 20
            assert achievements["questions_50"]["unlocked_at"] is None

    def test_catalogue_view_has_all(self, app):
        with app.app_context():
            assert len(get_user_achievements(1)) == 15

    def test_check_level_achievements(self, app):
        with app.app_context():
            earned = check_level_achievements(1, 12)
            assert earned == ["level_5", "level_10"]
            assert check_level_achievements(1, 12) == []

    def test_failed_payout_leaves_it_unearned(self, app):
        with app.app_context():
            with patch.object(GamificationProfileDB, "add_xp", side_effect=sqlite3.OperationalError("locked")):
                result = update_achievement_progress(1, "first_question", 1)
            assert result.ok is False
            assert AchievementStoreDB(1).get("first_question")["earned_at"] is None

            retry = update_achievement_progress(1, "first_question", 1)
            assert retry.ok and retry.achieved
            assert GamificationProfileDB(1).load().xp == 10

    def test_unpaid_level_achievement_retried_on_next_award(self, app):
        with app.app_context():
            award_xp(1, 506)
            store = AchievementStoreDB(1)
            store.unearn("level_5")
            award_xp(1, 1)
            assert store.get("level_5")["earned_at"] is not None
            assert GamificationProfileDB(1).load().xp == 607


class TestActivityEvents:
    def test_correct_answer_feeds_first_question(self, app):
        with app.app_context():
            result = record_correct_answer(1)
            assert result.count == 1
            assert [a["id"] for a in result.unlocked] == ["first_question"]
            assert record_correct_answer(1).unlocked == []

    def test_review_awards_xp(self, app):
        with app.app_context():
            result = record_review(1)
            assert result.count == 1
            assert result.xp_awarded == 5
            assert GamificationProfileDB(1).load().total_completed_reviews == 1

    def test_review_and_quiz_touch_the_streak(self, app):
        with app.app_context():
            _set_last_activity(1, (DAY - timedelta(days=1)).isoformat(), 2)
            record_review(1, today=DAY)
            assert GamificationProfileDB(1).load().streak_days == 3
            record_quiz_result(1, 1, 2, today=DAY + timedelta(days=1))
            assert GamificationProfileDB(1).load().streak_days == 4

    def test_review_reports_failed_payout(self, app):
        with app.app_context():
            with patch.object(GamificationProfileDB, "add_xp", side_effect=sqlite3.OperationalError("locked")):
                result = record_review(1, today=DAY)
            assert result.ok is False
            assert result.xp_awarded == 0
            assert "locked" in result.error

    def test_perfect_quiz(self, app):
        with app.app_context():
            assert record_quiz_result(1, 3, 4).unlocked == []
            result = record_quiz_result(1, 4, 4)
            assert result.xp_awarded == 8
            assert [a["id"] for a in result.unlocked] == ["perfect_quiz"]

    def test_empty_quiz_is_not_perfect(self, app):
        with app.app_context():
            assert record_quiz_result(1, 0, 0).unlocked == []

    def test_invalid_quiz(self, app):
        with app.app_context():
            with pytest.raises(ValueError):
                record_quiz_result(1, 5, 4)

    def test_multi_category(self, app):
        with app.app_context():
            log = ProgressLogDB(1)
            for category in ("history", "culture", "law"):
                log.record(50, DAY, category=category)
            result = record_category_studied(1)
            assert result.count == 3
            assert [a["id"] for a in result.unlocked] == ["multi_category"]


class TestWeeklyChallenge:
    def test_none_active(self, app):
        with app.app_context():
            assert get_weekly_challenge(1) is None
            result = update_weekly_challenge_progress(1, 1)
            assert result.ok and not result.completed and result.challenge is None

    def test_completion_rewards_once(self, app):
        with app.app_context():
            WeeklyChallengeStoreDB.create("Answer 2", 2, 75, "2026-03-09", "2026-03-15")
            assert not update_weekly_challenge_progress(1, 1).completed
            done = update_weekly_challenge_progress(1, 1)
            assert done.completed
            assert done.challenge["completed"] is True
            again = update_weekly_challenge_progress(1, 1)
            assert not again.completed
            assert again.challenge["current_progress"] == 3
            # 75 reward + 100 for the weekly_challenge achievement
            assert GamificationProfileDB(1).load().xp == 175

    def test_failed_reward_reopens_challenge(self, app):
        with app.app_context():
            WeeklyChallengeStoreDB.create("Answer 1", 1, 75, "2026-03-09", "2026-03-15")
            with patch.object(GamificationProfileDB, "add_xp", side_effect=sqlite3.OperationalError("locked")):
                failed = update_weekly_challenge_progress(1, 1)
            assert failed.ok is False
            assert get_weekly_challenge(1)["completed"] is False

            retry = update_weekly_challenge_progress(1, 0)
            assert retry.ok and retry.completed
            assert GamificationProfileDB(1).load().xp == 175

    def test_negative_delta(self, app):
        with app.app_context():
            with pytest.raises(ValueError):
                update_weekly_challenge_progress(1, -1)


class TestSnapshotAndLeaderboard:
    def test_snapshot(self, app):
        with app.app_context():
            award_xp(1, 20)
            profile = get_user_gamification(1)
            assert profile.xp == 20
            assert len(profile.achievements) == 15
            assert profile.weekly_challenge is None

    def test_leaderboard_all_and_weekly(self, app):
        with app.app_context():
            award_xp(1, 100)
            award_xp(2, 50)
            GamificationProfileDB.reset_weekly_xp()
            award_xp(2, 5)
            all_time = get_leaderboard(period="all")
            weekly = get_leaderboard(period="weekly")
            assert [e["user_id"] for e in all_time] == [1, 2]
            assert all_time[0]["rank"] == 1
            assert all_time[0]["username"] == "tester"
            assert [e["user_id"] for e in weekly] == [2, 1]

    def test_leaderboard_limit(self, app):
        with app.app_context():
            for uid in (1, 2, 3):
                award_xp(uid, uid * 10)
            assert len(get_leaderboard(limit=2)) == 2
