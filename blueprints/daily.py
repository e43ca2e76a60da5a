"""Daily question, practice progress and plan routes."""

from __future__ import annotations

import sqlite3
from datetime import date, datetime

from flask import Blueprint, jsonify
from flask_login import login_required

from audit import log_event
from auth import User
from daily_question import DIFFICULTIES, get_daily_question, record_progress, reset_question, submit_answer
from db_stores import DailyQuestionStoreDB
from helpers import admin_required, current_user_id, json_body, result_response
from subscription_store import PLAN_ORDER, SubscriptionStoreDB

bp = Blueprint("daily", __name__)

# failure code -> HTTP status
_FAILURE_STATUS = {
    "limit_reached": 403,
    "premium_required": 403,
    "no_question": 404,
    "already_answered": 409,
    "question_mismatch": 409,
}


def _outcome_response(result, status: int = 200):
    if not result.ok and result.code in _FAILURE_STATUS:
        return jsonify(result.to_dict()), _FAILURE_STATUS[result.code]
    return result_response(result, status)


@bp.route("/api/daily-question")
def api_daily_question():
    """Today's question; anonymous visitors get the shared question of the day."""
    return result_response(get_daily_question(current_user_id()))


@bp.route("/api/daily-question/answer", methods=["POST"])
@login_required
def api_daily_answer():
    data = json_body()
    answer = data.get("answer")
    if not isinstance(answer, str) or not answer.strip():
        return jsonify({"error": "answer is required"}), 400
    question_id = data.get("question_id")
    if question_id is not None and not isinstance(question_id, int):
        return jsonify({"error": "question_id must be an integer"}), 400
    return _outcome_response(submit_answer(current_user_id(), answer, question_id=question_id))


@bp.route("/api/daily-question/reset", methods=["POST"])
@login_required
def api_daily_reset():
    return _outcome_response(reset_question(current_user_id()))


@bp.route("/api/progress", methods=["POST"])
@login_required
def api_record_progress():
    data = json_body()
    try:
        result = record_progress(
            current_user_id(),
            score=data.get("score"),
            content_id=data.get("content_id"),
            category=data.get("category"),
            time_spent=int(data.get("time_spent", 0)),
        )
    except (TypeError, ValueError) as e:
        return jsonify({"error": str(e)}), 400
    return result_response(result, 201)


@bp.route("/api/admin/daily-questions", methods=["POST"])
@admin_required
def api_add_daily_question():
    data = json_body()
    required = ("question_date", "category", "question_text", "correct_answer")
    missing = [f for f in required if not data.get(f)]
    if missing:
        return jsonify({"error": f"Missing required fields: {', '.join(missing)}"}), 400
    difficulty = data.get("difficulty", "intermediate")
    if difficulty not in DIFFICULTIES:
        return jsonify({"error": f"difficulty must be one of {', '.join(DIFFICULTIES)}"}), 400
    try:
        date.fromisoformat(data["question_date"])
    except (TypeError, ValueError):
        return jsonify({"error": "question_date must be YYYY-MM-DD"}), 400
    options = data.get("options", [])
    if not isinstance(options, list):
        return jsonify({"error": "options must be a list"}), 400

    try:
        question_id = DailyQuestionStoreDB.add(
            question_date=data["question_date"],
            category=data["category"],
            difficulty=difficulty,
            question_text=data["question_text"],
            options=options,
            correct_answer=data["correct_answer"],
            explanation=data.get("explanation", ""),
            is_premium=bool(data.get("is_premium", False)),
        )
    except sqlite3.IntegrityError:
        return jsonify({"error": "A question already exists for that date, category and difficulty"}), 409

    log_event("daily_question_added", current_user_id(), f"id={question_id}")
    return jsonify({"question": DailyQuestionStoreDB.get(question_id)}), 201


@bp.route("/api/admin/users/<int:user_id>/plan", methods=["POST"])
@admin_required
def api_set_plan(user_id):
    data = json_body()
    plan = data.get("plan", "")
    if plan not in PLAN_ORDER:
        return jsonify({"error": f"plan must be one of {', '.join(PLAN_ORDER)}"}), 400

    if User.get(user_id) is None:
        return jsonify({"error": "User not found"}), 404
    expires_at = data.get("expires_at", "")
    if expires_at:
        try:
            datetime.fromisoformat(expires_at)
        except (TypeError, ValueError):
            return jsonify({"error": "expires_at must be an ISO timestamp"}), 400

    store = SubscriptionStoreDB(user_id)
    if plan == "free":
        store.cancel()
    else:
        store.upgrade(plan, expires_at=expires_at)
    log_event("plan_changed", current_user_id(), f"user={user_id} plan={plan}")
    return jsonify(store.plan_limits())
