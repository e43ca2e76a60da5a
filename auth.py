"""
User Authentication — Flask-Login blueprint.

JSON register, login and logout routes; just enough to know who is
calling the API. Uses werkzeug.security for password hashing.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime

from flask import Blueprint, jsonify, request
from flask_login import LoginManager, UserMixin, current_user, login_required, login_user, logout_user
from werkzeug.security import check_password_hash, generate_password_hash

from audit import log_event
from database import get_db
from extensions import limiter
from subscription_store import SubscriptionStoreDB

auth_bp = Blueprint("auth", __name__)
login_manager = LoginManager()


@login_manager.unauthorized_handler
def _unauthorized():
    return jsonify({"error": "Authentication required"}), 401


class User(UserMixin):
    """Wraps a DB user row for Flask-Login."""

    def __init__(self, id: int, name: str, username: str | None, email: str, role: str = "student"):
        self.id = id
        self.name = name
        self.username = username
        self.email = email
        self.role = role

    @property
    def is_admin(self):
        return self.role == "admin"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "username": self.username,
            "email": self.email,
            "role": self.role,
        }

    @staticmethod
    def _from_row(row):
        return User(row["id"], row["name"], row["username"], row["email"], row["role"])

    @staticmethod
    def get(user_id: int):
        db = get_db()
        row = db.execute(
            "SELECT id, name, username, email, role FROM users WHERE id = ?", (user_id,)
        ).fetchone()
        return User._from_row(row) if row else None

    @staticmethod
    def find_for_login(identifier: str):
        """Row (with password hash) matching an email or username."""
        db = get_db()
        return db.execute(
            "SELECT id, name, username, email, role, password_hash FROM users "
            "WHERE email = ? OR username = ?",
            (identifier, identifier),
        ).fetchone()


@login_manager.user_loader
def load_user(user_id):
    return User.get(int(user_id))


def _validate_password(password: str) -> str | None:
    """Return an error message if password is too weak, else None."""
    if len(password) < 8:
        return "Password must be at least 8 characters."
    if not any(c.isupper() for c in password):
        return "Password must contain at least one uppercase letter."
    if not any(c.islower() for c in password):
        return "Password must contain at least one lowercase letter."
    if not any(c.isdigit() for c in password):
        return "Password must contain at least one digit."
    return None


@auth_bp.route("/login", methods=["POST"])
@limiter.limit("5 per 15 minutes")
def login():
    data = request.get_json(silent=True) or {}
    identifier = (data.get("email") or data.get("username") or "").strip().lower()
    password = data.get("password", "")

    if not identifier or not password:
        return jsonify({"error": "Email and password are required."}), 400

    row = User.find_for_login(identifier)
    if not row or not row["password_hash"] or not check_password_hash(row["password_hash"], password):
        log_event("login_failed", row["id"] if row else None, f"identifier={identifier}")
        return jsonify({"error": "Invalid email or password."}), 401

    user = User._from_row(row)
    login_user(user, remember=True)
    log_event("login_success", user.id)
    return jsonify({"user": user.to_dict()})


@auth_bp.route("/register", methods=["POST"])
@limiter.limit("3 per hour")
def register():
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    username = (data.get("username") or "").strip().lower() or None
    email = (data.get("email") or "").strip().lower()
    password = data.get("password", "")

    if not name or not email or not password:
        return jsonify({"error": "Name, email and password are required."}), 400
    pw_error = _validate_password(password)
    if pw_error:
        return jsonify({"error": pw_error}), 400

    db = get_db()
    try:
        cur = db.execute(
            "INSERT INTO users (name, username, email, password_hash, role, created_at) "
            "VALUES (?, ?, ?, ?, 'student', ?)",
            (name, username, email, generate_password_hash(password), datetime.now().isoformat()),
        )
        db.commit()
    except sqlite3.IntegrityError:
        return jsonify({"error": "An account with that email or username already exists."}), 409

    user = User.get(cur.lastrowid)
    login_user(user, remember=True)
    log_event("register", user.id)
    return jsonify({"user": user.to_dict()}), 201


@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    log_event("logout", current_user.id)
    logout_user()
    return jsonify({"success": True})


@auth_bp.route("/api/me")
@login_required
def me():
    limits = SubscriptionStoreDB(current_user.id).plan_limits()
    return jsonify({"user": current_user.to_dict(), "plan": limits})
