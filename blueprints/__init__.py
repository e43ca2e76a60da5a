"""
Blueprint registration for the Citizenship Study Companion.

All blueprints are registered without URL prefixes; routes carry their own /api paths.
"""

from __future__ import annotations


def register_blueprints(app):
    from blueprints.daily import bp as daily_bp
    from blueprints.gamification import bp as gamification_bp
    from blueprints.newsletter import bp as newsletter_bp
    from blueprints.voice import bp as voice_bp

    app.register_blueprint(gamification_bp)
    app.register_blueprint(daily_bp)
    app.register_blueprint(voice_bp)
    app.register_blueprint(newsletter_bp)
