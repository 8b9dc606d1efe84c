"""slack_notification and teams_notification executors.

Both post to an incoming-webhook URL. The chat-specific rendering sits next to
the standard {event, automation} envelope so downstream consumers can still
read the raw event.
"""

from __future__ import annotations

from typing import Any

from packages.core.src.types import (
    ActionType,
    AutomationRule,
    ChatNotificationConfig,
    Event,
)

from .base import (
    ActionResult,
    HttpActionExecutor,
    build_envelope,
    encode_body,
    excerpt,
    format_rating,
    headline,
)

# MessageCard theme colors
THEME_ALERT = "D32F2F"
THEME_INFO = "1976D2"


def _facts(event: Event, automation: AutomationRule) -> list[tuple[str, str]]:
    snapshot = event.snapshot
    facts = [
        ("Rating", format_rating(snapshot.rating)),
        ("Platform", (snapshot.platform or "unknown").title()),
        ("Author", snapshot.author_name or "Anonymous"),
        ("Automation", automation.name),
    ]
    if snapshot.sentiment:
        facts.append(("Sentiment", snapshot.sentiment))
    return facts


def build_slack_payload(event: Event, automation: AutomationRule) -> dict[str, Any]:
    title = headline(event)
    body = excerpt(event.snapshot.body, limit=300)
    blocks: list[dict[str, Any]] = [
        {"type": "header", "text": {"type": "plain_text", "text": title}},
        {
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": f"*{name}:*\n{value}"}
                for name, value in _facts(event, automation)
            ],
        },
    ]
    if body:
        blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": f">{body}"}})

    return {"text": title, "blocks": blocks, **build_envelope(event, automation)}


def build_teams_payload(event: Event, automation: AutomationRule) -> dict[str, Any]:
    title = headline(event)
    rating = event.snapshot.rating
    return {
        "@type": "MessageCard",
        "@context": "https://schema.org/extensions",
        "themeColor": THEME_ALERT if rating is not None and rating <= 2 else THEME_INFO,
        "summary": title,
        "title": title,
        "sections": [
            {
                "facts": [{"name": n, "value": v} for n, v in _facts(event, automation)],
                "text": excerpt(event.snapshot.body, limit=300),
            }
        ],
        **build_envelope(event, automation),
    }


class SlackNotificationExecutor(HttpActionExecutor):
    action_type = ActionType.SLACK_NOTIFICATION
    config_type = ChatNotificationConfig

    async def _execute(
        self,
        config: ChatNotificationConfig,
        event: Event,
        automation: AutomationRule,
    ) -> ActionResult:
        response = await self._post(config.webhook_url, encode_body(build_slack_payload(event, automation)))
        return ActionResult.success(status_code=response.status_code)


class TeamsNotificationExecutor(HttpActionExecutor):
    action_type = ActionType.TEAMS_NOTIFICATION
    config_type = ChatNotificationConfig

    async def _execute(
        self,
        config: ChatNotificationConfig,
        event: Event,
        automation: AutomationRule,
    ) -> ActionResult:
        response = await self._post(config.webhook_url, encode_body(build_teams_payload(event, automation)))
        return ActionResult.success(status_code=response.status_code)
