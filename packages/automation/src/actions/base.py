"""Base action executor.

Every executor:
1. Declares the action type and config model it handles
2. Turns collaborator errors into a failed or skipped ActionResult
3. Logs its outcome and timing
"""

from __future__ import annotations

import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog

from packages.core.src.errors import (
    ActionExecutionError,
    IntegrationError,
    InvalidAssigneeError,
    ReviewNotFoundError,
)
from packages.core.src.types import (
    ActionConfig,
    ActionType,
    AutomationRule,
    DeliveryOutcome,
    Event,
    EventKind,
)

logger = structlog.get_logger()

USER_AGENT = "review-automations/1.0"


@dataclass
class ActionResult:
    """Outcome of one action execution."""

    outcome: DeliveryOutcome
    detail: str | None = None
    transient: bool = False
    execution_time_ms: float = 0
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.outcome is DeliveryOutcome.SUCCESS

    @classmethod
    def success(cls, detail: str | None = None, **metadata: Any) -> ActionResult:
        return cls(DeliveryOutcome.SUCCESS, detail, metadata=metadata)

    @classmethod
    def failed(cls, detail: str, transient: bool = False, **metadata: Any) -> ActionResult:
        return cls(DeliveryOutcome.FAILED, detail, transient=transient, metadata=metadata)

    @classmethod
    def skipped(cls, detail: str, **metadata: Any) -> ActionResult:
        return cls(DeliveryOutcome.SKIPPED, detail, metadata=metadata)


def build_envelope(event: Event, automation: AutomationRule) -> dict[str, Any]:
    """Outbound JSON body shared by every HTTP action."""
    return {"event": event.to_payload(), "automation": automation.reference()}


def encode_body(payload: dict[str, Any]) -> bytes:
    """Canonical JSON bytes. Signatures are computed over exactly these bytes."""
    return json.dumps(payload, separators=(",", ":"), sort_keys=True).encode()


def format_rating(rating: int | None) -> str:
    return f"{rating}★" if rating is not None else "Unrated"


def headline(event: Event) -> str:
    """One-line description of the triggering review."""
    snapshot = event.snapshot
    platform = (snapshot.platform or "unknown platform").title()
    if event.kind is EventKind.NO_REPLY_ELAPSED:
        return f"{format_rating(snapshot.rating)} review on {platform} still has no reply"
    return f"New {format_rating(snapshot.rating)} review on {platform}"


def excerpt(text: str | None, limit: int = 500) -> str:
    if not text:
        return ""
    text = text.strip()
    return text if len(text) <= limit else text[: limit - 1].rstrip() + "…"


class ActionExecutor(ABC):
    """Base class for all action executors.

    Example:
        class MyExecutor(ActionExecutor):
            action_type = ActionType.WEBHOOK
            config_type = WebhookConfig

            async def _execute(self, config, event, automation) -> ActionResult:
                ...
    """

    action_type: ActionType
    config_type: type

    async def execute(
        self,
        config: ActionConfig,
        event: Event,
        automation: AutomationRule,
    ) -> ActionResult:
        """Execute the action and classify the outcome.

        Collaborator errors never escape: a vanished review is skipped, every
        other known failure becomes a failed result.
        """
        start_time = time.perf_counter()

        if not isinstance(config, self.config_type):
            result = ActionResult.failed(
                f"expected {self.config_type.__name__}, got {type(config).__name__}"
            )
        else:
            try:
                result = await self._execute(config, event, automation)
            except ReviewNotFoundError as e:
                result = ActionResult.skipped(e.message)
            except InvalidAssigneeError as e:
                result = ActionResult.failed(e.message)
            except ActionExecutionError as e:
                result = ActionResult.failed(
                    e.message, transient=e.transient, status_code=e.status_code
                )
            except IntegrationError as e:
                result = ActionResult.failed(e.message, transient=True)
            except httpx.TimeoutException:
                result = ActionResult.failed(f"{self.action_type.value} timed out", transient=True)
            except httpx.HTTPError as e:
                result = ActionResult.failed(
                    f"{self.action_type.value} request error: {e}", transient=True
                )

        result.execution_time_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            "action_executed",
            action_type=self.action_type.value,
            automation_id=str(automation.id),
            review_id=str(event.review_id),
            outcome=result.outcome.value,
            detail=result.detail,
            execution_time_ms=round(result.execution_time_ms, 2),
        )
        return result

    @abstractmethod
    async def _execute(
        self,
        config: Any,
        event: Event,
        automation: AutomationRule,
    ) -> ActionResult:
        """Implement action-specific logic."""
        pass


class HttpActionExecutor(ActionExecutor):
    """Executor that POSTs JSON to an external endpoint."""

    def __init__(self, client: httpx.AsyncClient, timeout: float = 5.0):
        self._client = client
        self._timeout = timeout

    async def _post(
        self,
        url: str,
        body: bytes,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """POST raw JSON bytes.

        Raises:
            ActionExecutionError: Non-2xx response (5xx and 429 are transient)
            httpx.HTTPError: Transport failure or timeout
        """
        response = await self._client.post(
            url,
            content=body,
            headers={
                "Content-Type": "application/json",
                "User-Agent": USER_AGENT,
                **(headers or {}),
            },
            timeout=self._timeout,
        )
        if not response.is_success:
            raise ActionExecutionError(
                self.action_type.value,
                f"endpoint returned HTTP {response.status_code}",
                transient=response.status_code >= 500 or response.status_code == 429,
                status_code=response.status_code,
            )
        return response
