"""
Newsletter subscriptions and delivery.

Uses EMAIL_BACKEND config to choose transport:
  - "log" (default): writes each message to the log
  - "smtp": sends via SMTP using MAIL_* settings, one session per campaign
"""

from __future__ import annotations

import logging
import re
import smtplib
from dataclasses import asdict, dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional
from urllib.parse import urlencode

from flask import current_app

from db_stores import NewsletterStoreDB

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
NO_RECIPIENTS = "No recipients match the criteria"


@dataclass
class NewsletterResult:
    recipient_count: int
    campaign_id: Optional[int]
    message: str
    delivered: int = 0
    error: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


def normalize_email(email: str) -> str:
    email = (email or "").strip().lower()
    if not EMAIL_RE.match(email):
        raise ValueError("A valid email address is required")
    return email


def _clean_tags(tags) -> list[str]:
    if tags is None:
        return []
    if isinstance(tags, str) or not all(isinstance(t, str) for t in tags):
        raise ValueError("tags must be a list of strings")
    return sorted({t.strip() for t in tags if t.strip()})


def subscribe(email: str, tags: list[str] | None = None) -> dict:
    """Create or re-activate a subscription."""
    sub = NewsletterStoreDB.subscribe(normalize_email(email), _clean_tags(tags))
    logger.info("Newsletter subscribe email=%s tags=%s", sub["email"], sub["tags"])
    return sub


def unsubscribe(email: str, token: str) -> bool:
    """Unsubscribe when the token matches; False otherwise."""
    if not token:
        return False
    done = NewsletterStoreDB.unsubscribe(normalize_email(email), token)
    if done:
        logger.info("Newsletter unsubscribe email=%s", email)
    return done


def unsubscribe_url(email: str, token: str) -> str:
    base = current_app.config.get("BASE_URL", "").rstrip("/")
    return f"{base}/api/newsletter/unsubscribe?{urlencode({'email': email, 'token': token})}"


def render_body(content: str, email: str, token: str) -> str:
    link = unsubscribe_url(email, token)
    return (
        f"{content}\n"
        f'<hr><p style="font-size:12px;color:#888">'
        f'You are receiving this because you subscribed to our newsletter. '
        f'<a href="{link}">Unsubscribe</a></p>'
    )


class EmailService:
    """Deliver many messages over a single transport session."""

    def __init__(self, config):
        self.backend = config.get("EMAIL_BACKEND", "log")
        self.mail_from = config.get("MAIL_FROM", "newsletter@example.com")
        self.server = config.get("MAIL_SERVER", "localhost")
        self.port = config.get("MAIL_PORT", 587)
        self.username = config.get("MAIL_USERNAME", "")
        self.password = config.get("MAIL_PASSWORD", "")
        self._smtp: smtplib.SMTP | None = None

    def __enter__(self):
        if self.backend == "smtp":
            smtp = smtplib.SMTP(self.server, self.port)
            try:
                smtp.starttls()
                if self.username and self.password:
                    smtp.login(self.username, self.password)
            except (smtplib.SMTPException, OSError):
                smtp.close()
                raise
            self._smtp = smtp
        return self

    def __exit__(self, *exc):
        smtp, self._smtp = self._smtp, None
        if smtp is None:
            return
        try:
            smtp.quit()
        except (smtplib.SMTPException, OSError) as e:
            logger.warning("SMTP quit failed, closing socket: %s", e)
            smtp.close()

    def send(self, to: str, subject: str, body_html: str) -> bool:
        if self.backend == "log":
            logger.info("EMAIL [to=%s] subject=%s\n%s", to, subject, body_html)
            return True

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.mail_from
        msg["To"] = to
        msg.attach(MIMEText(body_html, "html"))
        try:
            self._smtp.send_message(msg)
            return True
        except smtplib.SMTPException as e:
            logger.error("SMTP send to %s failed: %s", to, e)
            return False


def send_newsletter(subject: str, content: str, tags: list[str] | None = None) -> NewsletterResult:
    """Send a campaign to every active subscriber carrying all *tags*."""
    subject = (subject or "").strip()
    content = (content or "").strip()
    if not subject or not content:
        raise ValueError("Missing required fields: subject and content")
    tags = _clean_tags(tags)

    recipients = NewsletterStoreDB.active_recipients(tags)
    if not recipients:
        return NewsletterResult(recipient_count=0, campaign_id=None, message=NO_RECIPIENTS)

    sent_to = []
    error = ""
    try:
        with EmailService(current_app.config) as mailer:
            for r in recipients:
                if mailer.send(r["email"], subject, render_body(content, r["email"], r["token"])):
                    sent_to.append(r["email"])
    except (smtplib.SMTPException, OSError) as e:
        # transport lost; whatever was delivered still counts
        logger.error("Newsletter delivery aborted after %d of %d recipients: %s",
                     len(sent_to), len(recipients), e)
        error = str(e) or type(e).__name__

    if len(sent_to) == len(recipients):
        status = "sent"
    elif sent_to:
        status = "partial"
    else:
        status = "failed"
    campaign_id = NewsletterStoreDB.record_campaign(subject, content, tags, len(recipients), status)
    NewsletterStoreDB.mark_sent(sent_to)

    logger.info("Newsletter campaign=%s recipients=%d delivered=%d",
                campaign_id, len(recipients), len(sent_to))
    return NewsletterResult(
        recipient_count=len(recipients),
        campaign_id=campaign_id,
        message=f"Newsletter sent to {len(sent_to)} of {len(recipients)} recipients",
        delivered=len(sent_to),
        error=error,
    )
