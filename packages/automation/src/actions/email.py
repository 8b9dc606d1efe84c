"""email_alert executor."""

from __future__ import annotations

import asyncio
from html import escape

import structlog

from packages.core.src.errors import ActionExecutionError, AutomationError
from packages.core.src.protocols import MailSender
from packages.core.src.types import (
    ActionType,
    AutomationRule,
    EmailAlertConfig,
    Event,
    EventKind,
)

from .base import ActionExecutor, ActionResult, excerpt, format_rating, headline

logger = structlog.get_logger()

LOW_RATING_MAX = 2


def render_email(event: Event, automation: AutomationRule, app_url: str) -> tuple[str, str, str]:
    """Render subject, plain-text and HTML bodies for an alert.

    Returns:
        (subject, text, html)
    """
    snapshot = event.snapshot
    platform = (snapshot.platform or "unknown platform").title()
    rating = format_rating(snapshot.rating)

    if event.kind is EventKind.NO_REPLY_ELAPSED:
        subject = f"Reminder: {rating} review on {platform} is awaiting a reply"
    elif snapshot.rating is not None and snapshot.rating <= LOW_RATING_MAX:
        subject = f"⚠️ {rating} Review Needs Attention"
    else:
        subject = f"{headline(event)} ({automation.name})"

    link = f"{app_url.rstrip('/')}/reviews"
    fields = [
        ("Automation", automation.name),
        ("Platform", platform),
        ("Rating", rating),
        ("Author", snapshot.author_name or "Anonymous"),
    ]
    if snapshot.sentiment:
        fields.append(("Sentiment", snapshot.sentiment))
    body = excerpt(snapshot.body)

    text_lines = [headline(event), ""]
    text_lines += [f"{name}: {value}" for name, value in fields]
    if body:
        text_lines += ["", body]
    text_lines += ["", f"View and reply: {link}"]
    text = "\n".join(text_lines)

    rows = "".join(
        f"<tr><td><strong>{escape(name)}</strong></td><td>{escape(str(value))}</td></tr>"
        for name, value in fields
    )
    html = (
        f"<h2>{escape(headline(event))}</h2>"
        f"<table>{rows}</table>"
        + (f"<blockquote>{escape(body)}</blockquote>" if body else "")
        + f'<p><a href="{escape(link)}">View and reply</a></p>'
    )
    return subject, text, html


class EmailAlertExecutor(ActionExecutor):
    """Sends a templated alert to every configured recipient."""

    action_type = ActionType.EMAIL_ALERT
    config_type = EmailAlertConfig

    def __init__(self, mail_sender: MailSender | None, app_url: str = "http://localhost:3000"):
        self._mail_sender = mail_sender
        self._app_url = app_url

    async def _execute(
        self,
        config: EmailAlertConfig,
        event: Event,
        automation: AutomationRule,
    ) -> ActionResult:
        if self._mail_sender is None:
            raise ActionExecutionError(self.action_type.value, "no mail sender configured")

        subject, text, html = render_email(event, automation, self._app_url)
        results = await asyncio.gather(
            *(self._mail_sender.send_email(to, subject, text, html) for to in config.recipients),
            return_exceptions=True,
        )

        delivered: list[str] = []
        rejected: list[str] = []
        for recipient, result in zip(config.recipients, results):
            if isinstance(result, AutomationError):
                rejected.append(f"{recipient}: {result.message}")
                logger.warning(
                    "email_recipient_rejected",
                    automation_id=str(automation.id),
                    recipient=recipient,
                    error=result.message,
                )
            elif isinstance(result, BaseException):
                raise result
            else:
                delivered.append(recipient)

        if not delivered:
            raise ActionExecutionError(
                self.action_type.value,
                "all recipients rejected: " + "; ".join(rejected),
            )

        detail = f"{len(rejected)} of {len(results)} recipients rejected" if rejected else None
        return ActionResult.success(detail, delivered=len(delivered), rejected=len(rejected))
