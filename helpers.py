"""
Shared helpers used across blueprints.

Extracted from app.py to break circular dependencies.
"""

from __future__ import annotations

from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import jsonify, request
from flask_login import current_user


def current_user_id() -> int | None:
    """Return the current authenticated user's ID, or None for anonymous callers."""
    if current_user.is_authenticated:
        return current_user.id
    return None


def admin_required(f: Callable) -> Callable:
    """Decorator that requires the admin role."""
    @wraps(f)
    def decorated(*args: Any, **kwargs: Any) -> Any:
        if not current_user.is_authenticated:
            return jsonify({"error": "Authentication required"}), 401
        if not current_user.is_admin:
            return jsonify({"error": "Admin access required"}), 403
        return f(*args, **kwargs)
    return decorated


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def result_response(result, status: int = 200):
    """Serialize a service result, mapping ok=False to a 500."""
    if not result.ok:
        return jsonify({"error": result.error or "Internal error"}), 500
    return jsonify(result.to_dict()), status


def limit_arg(default_limit: int = 10, max_limit: int = 100) -> int:
    """Extract ?limit= from request.args, clamped to [1, max_limit]."""
    try:
        return min(max_limit, max(1, int(request.args.get("limit", default_limit))))
    except (ValueError, TypeError):
        return default_limit
