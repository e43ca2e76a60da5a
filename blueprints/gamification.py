"""Gamification routes: profile, achievements, challenges, leaderboard."""

from __future__ import annotations

from dataclasses import asdict

from flask import Blueprint, current_app, jsonify, request
from flask_login import login_required

from audit import log_event
from db_stores import GamificationProfileDB, WeeklyChallengeStoreDB
from gamification import LEVELS
from gamification_service import (
    get_leaderboard,
    get_user_achievements,
    get_user_gamification,
    get_weekly_challenge,
    record_quiz_result,
    record_review,
)
from helpers import admin_required, current_user_id, json_body, limit_arg, result_response

bp = Blueprint("gamification", __name__)


@bp.route("/api/gamification")
@login_required
def api_gamification():
    return jsonify(get_user_gamification(current_user_id()).to_dict())


@bp.route("/api/gamification/achievements")
@login_required
def api_achievements():
    achievements = get_user_achievements(current_user_id())
    return jsonify({
        "achievements": achievements,
        "unlocked": sum(1 for a in achievements if a["unlocked_at"]),
        "total": len(achievements),
    })


@bp.route("/api/gamification/xp-history")
@login_required
def api_xp_history():
    return jsonify({"events": GamificationProfileDB(current_user_id()).xp_history(limit_arg(20))})


@bp.route("/api/gamification/weekly-challenge")
@login_required
def api_weekly_challenge():
    return jsonify({"challenge": get_weekly_challenge(current_user_id())})


@bp.route("/api/gamification/reviews", methods=["POST"])
@login_required
def api_record_review():
    """A spaced-repetition review was completed."""
    return result_response(record_review(current_user_id()))


@bp.route("/api/gamification/quiz", methods=["POST"])
@login_required
def api_record_quiz():
    data = json_body()
    try:
        correct = int(data.get("correct"))
        total = int(data.get("total"))
        result = record_quiz_result(current_user_id(), correct, total)
    except (TypeError, ValueError) as e:
        return jsonify({"error": f"Invalid quiz result: {e}"}), 400
    return result_response(result)


@bp.route("/api/levels")
def api_levels():
    return jsonify({"levels": [asdict(level) for level in LEVELS]})


@bp.route("/api/leaderboard")
def api_leaderboard():
    period = request.args.get("period", "all")
    if period not in ("all", "weekly"):
        return jsonify({"error": "period must be 'all' or 'weekly'"}), 400
    limit = limit_arg(current_app.config.get("LEADERBOARD_LIMIT", 10))
    return jsonify({"period": period, "entries": get_leaderboard(limit=limit, period=period)})


@bp.route("/api/admin/weekly-challenges", methods=["POST"])
@admin_required
def api_create_weekly_challenge():
    data = json_body()
    title = (data.get("title") or "").strip()
    start_date = data.get("start_date", "")
    end_date = data.get("end_date", "")
    if not title or not start_date or not end_date:
        return jsonify({"error": "title, start_date and end_date are required"}), 400
    if end_date < start_date:
        return jsonify({"error": "end_date must not be before start_date"}), 400

    try:
        challenge_id = WeeklyChallengeStoreDB.create(
            title=title,
            goal=int(data.get("goal", 0)),
            xp_reward=int(data.get("xp_reward", 0)),
            start_date=start_date,
            end_date=end_date,
            description=data.get("description", ""),
        )
    except (TypeError, ValueError) as e:
        return jsonify({"error": str(e)}), 400

    log_event("weekly_challenge_created", current_user_id(), f"id={challenge_id} title={title}")
    return jsonify({"id": challenge_id, "challenge": WeeklyChallengeStoreDB.active()}), 201
