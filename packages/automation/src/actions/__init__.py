"""Action executors and their registry."""

from __future__ import annotations

import httpx
import structlog

from packages.core.src.protocols import MailSender, ReviewStore
from packages.core.src.types import ActionType

from .base import ActionExecutor, ActionResult, HttpActionExecutor, build_envelope, encode_body
from .chat import SlackNotificationExecutor, TeamsNotificationExecutor
from .email import EmailAlertExecutor, render_email
from .review import AssignReviewExecutor, TagReviewExecutor
from .webhook import SIGNATURE_HEADER, WebhookExecutor, sign_payload, verify_signature

logger = structlog.get_logger()


class ActionRegistry:
    """Closed registry of executors keyed by action type.

    Example:
        registry = ActionRegistry()
        registry.register(WebhookExecutor(client))
        executor = registry.get(ActionType.WEBHOOK)
    """

    def __init__(self):
        self._executors: dict[ActionType, ActionExecutor] = {}

    def register(self, executor: ActionExecutor) -> None:
        if executor.action_type in self._executors:
            logger.warning("executor_replaced", action_type=executor.action_type.value)
        self._executors[executor.action_type] = executor

    def get(self, action_type: ActionType) -> ActionExecutor | None:
        return self._executors.get(action_type)

    def missing(self) -> list[ActionType]:
        """Action types without an executor."""
        return [t for t in ActionType if t not in self._executors]

    def __contains__(self, action_type: object) -> bool:
        return action_type in self._executors

    def __len__(self) -> int:
        return len(self._executors)


def build_action_registry(
    *,
    http_client: httpx.AsyncClient,
    reviews: ReviewStore,
    mail_sender: MailSender | None = None,
    app_url: str = "http://localhost:3000",
    timeout: float = 5.0,
) -> ActionRegistry:
    """Registry with one executor per action type."""
    registry = ActionRegistry()
    registry.register(EmailAlertExecutor(mail_sender, app_url=app_url))
    registry.register(SlackNotificationExecutor(http_client, timeout=timeout))
    registry.register(TeamsNotificationExecutor(http_client, timeout=timeout))
    registry.register(WebhookExecutor(http_client, timeout=timeout))
    registry.register(TagReviewExecutor(reviews))
    registry.register(AssignReviewExecutor(reviews))
    return registry


__all__ = [
    "ActionExecutor",
    "ActionRegistry",
    "ActionResult",
    "HttpActionExecutor",
    "EmailAlertExecutor",
    "SlackNotificationExecutor",
    "TeamsNotificationExecutor",
    "WebhookExecutor",
    "TagReviewExecutor",
    "AssignReviewExecutor",
    "SIGNATURE_HEADER",
    "build_action_registry",
    "build_envelope",
    "encode_body",
    "render_email",
    "sign_payload",
    "verify_signature",
]
