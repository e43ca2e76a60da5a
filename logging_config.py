"""
Logging setup for the study companion API.

LOG_FORMAT=json writes one JSON object per line; anything else writes plain
text. While a request is being handled every record, including the XP,
streak and newsletter lines from the service modules, carries the request
id and the id of the logged-in learner.
"""

from __future__ import annotations

import json
import logging
import time
import uuid

from flask import Flask, g, has_request_context, request

ACCESS_LOGGER = "study_companion.access"
TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s [%(request_id)s user=%(user_id)s]: %(message)s"


def _learner_id() -> str:
    # only a user flask-login has already loaded; loading one here could recurse
    user = g.get("_login_user")
    if user is not None and user.is_authenticated:
        return str(user.get_id())
    return "-"


class RequestContextFilter(logging.Filter):
    """Stamp request_id and user_id on records; "-" outside a request."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            record.request_id = getattr(g, "request_id", "-")
            record.user_id = _learner_id()
        else:
            record.request_id = "-"
            record.user_id = "-"
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in ("request_id", "user_id"):
            value = getattr(record, key, "-")
            if value != "-":
                entry[key] = value
        if record.exc_info and record.exc_info[0]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def init_logging(app: Flask) -> None:
    """Install the root handler and the request id / access log hooks."""
    log_level = str(app.config.get("LOG_LEVEL", "INFO")).upper()

    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level, logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler()
    handler.addFilter(RequestContextFilter())
    if app.config.get("LOG_FORMAT", "text") == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    root.addHandler(handler)

    # werkzeug repeats the access line; the scheduler logs every tick
    logging.getLogger("werkzeug").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    access_log = logging.getLogger(ACCESS_LOGGER)

    @app.before_request
    def _start_request():
        # a proxy-supplied id is kept so lines can be joined across services
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
        g.request_start = time.perf_counter()

    @app.after_request
    def _log_access(response):
        elapsed_ms = (time.perf_counter() - g.get("request_start", time.perf_counter())) * 1000
        response.headers["X-Request-ID"] = g.get("request_id", "-")
        access_log.info("%s %s %s %.0fms", request.method, request.path,
                        response.status_code, elapsed_ms)
        return response
