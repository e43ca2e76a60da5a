"""Text-to-speech routes."""

from __future__ import annotations

from flask import Blueprint, jsonify
from flask_login import login_required

from audit import log_event
from helpers import admin_required, current_user_id, json_body
from voice import VoiceProviderError, get_voice_settings, speak, update_voice_settings

bp = Blueprint("voice", __name__)


@bp.route("/api/voice/settings")
def api_voice_settings():
    return jsonify(get_voice_settings().to_dict())


@bp.route("/api/voice/settings", methods=["PUT"])
@admin_required
def api_update_voice_settings():
    try:
        settings = update_voice_settings(json_body())
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    log_event("voice_settings_updated", current_user_id(), f"provider={settings.provider}")
    return jsonify(settings.to_dict())


@bp.route("/api/voice/speak", methods=["POST"])
@login_required
def api_speak():
    data = json_body()
    text = data.get("text")
    if not isinstance(text, str):
        return jsonify({"error": "text is required"}), 400
    try:
        result = speak(text, language=data.get("language", "en"), voice_id=data.get("voice_id"))
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except VoiceProviderError as e:
        return jsonify({"error": str(e)}), 502
    return jsonify(result.to_dict())
