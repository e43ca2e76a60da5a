"""Newsletter subscribe/unsubscribe and campaign sending."""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from audit import log_event
from extensions import limiter
from helpers import admin_required, current_user_id, json_body
from newsletter import send_newsletter, subscribe, unsubscribe

bp = Blueprint("newsletter", __name__)


@bp.route("/api/newsletter/subscribe", methods=["POST"])
@limiter.limit("10 per hour")
def api_subscribe():
    data = json_body()
    try:
        sub = subscribe(data.get("email", ""), data.get("tags"))
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"email": sub["email"], "status": sub["status"], "tags": sub["tags"]}), 201


@bp.route("/api/newsletter/unsubscribe", methods=["GET", "POST"])
def api_unsubscribe():
    params = json_body() if request.method == "POST" else request.args
    email = params.get("email", "")
    token = params.get("token", "")
    if not email or not token:
        return jsonify({"error": "email and token are required"}), 400
    try:
        done = unsubscribe(email, token)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    if not done:
        return jsonify({"error": "Invalid or already used unsubscribe link"}), 404
    return jsonify({"success": True, "message": "You have been unsubscribed."})


@bp.route("/api/admin/newsletter/send", methods=["POST"])
@admin_required
def api_send_newsletter():
    data = json_body()
    try:
        result = send_newsletter(data.get("subject", ""), data.get("content", ""), data.get("tags"))
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    log_event("newsletter_sent", current_user_id(),
              f"campaign={result.campaign_id} recipients={result.recipient_count}")
    return jsonify(result.to_dict())
