"""Review Automations Type Definitions.

Domain types shared by the rule engine, the repositories and the gateway.
Trigger conditions and action configs are tagged unions keyed by the
automation's trigger/action type and are validated once, when an
automation is loaded, never per event.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterator, Union
from uuid import UUID, uuid4

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import InvalidAutomationError


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what the database stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _to_naive_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _split_csv(value: Any) -> Any:
    """Accept "a, b" strings from the dashboard form as well as lists."""
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(part for part in value.split(","))
    return value


# =============================================================================
# Enums
# =============================================================================


class TriggerType(str, Enum):
    """Category of condition an automation evaluates."""

    NEW_REVIEW = "new_review"
    RATING_BELOW = "rating_below"
    RATING_ABOVE = "rating_above"
    SENTIMENT_NEGATIVE = "sentiment_negative"
    KEYWORD_MATCH = "keyword_match"
    NO_REPLY_24H = "no_reply_24h"


class ActionType(str, Enum):
    """Category of outbound effect an automation performs."""

    EMAIL_ALERT = "email_alert"
    SLACK_NOTIFICATION = "slack_notification"
    TEAMS_NOTIFICATION = "teams_notification"
    WEBHOOK = "webhook"
    TAG_REVIEW = "tag_review"
    ASSIGN_REVIEW = "assign_review"


class EventKind(str, Enum):
    """Canonical review event kinds."""

    CREATED = "created"
    UPDATED = "updated"
    NO_REPLY_ELAPSED = "no_reply_elapsed"


class DeliveryOutcome(str, Enum):
    """Outcome stored on a DeliveryRecord."""

    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


# Event kinds each trigger type can ever match. Used as a cheap pre-filter
# before the condition evaluator runs.
TRIGGER_EVENT_KINDS: dict[TriggerType, frozenset[EventKind]] = {
    TriggerType.NEW_REVIEW: frozenset({EventKind.CREATED}),
    TriggerType.RATING_BELOW: frozenset({EventKind.CREATED, EventKind.UPDATED}),
    TriggerType.RATING_ABOVE: frozenset({EventKind.CREATED, EventKind.UPDATED}),
    TriggerType.SENTIMENT_NEGATIVE: frozenset({EventKind.CREATED, EventKind.UPDATED}),
    TriggerType.KEYWORD_MATCH: frozenset({EventKind.CREATED, EventKind.UPDATED}),
    TriggerType.NO_REPLY_24H: frozenset({EventKind.NO_REPLY_ELAPSED}),
}


# =============================================================================
# Trigger conditions
# =============================================================================


class _Conditions(BaseModel):
    """Fields shared by every condition shape."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    platforms: tuple[str, ...] = Field(
        default=(),
        description="Restrict to these review platforms (empty = all)",
    )

    @field_validator("platforms", mode="before")
    @classmethod
    def normalize_platforms(cls, v: Any) -> Any:
        return tuple(p.strip().lower() for p in _split_csv(v) if p and p.strip())


class NoConditions(_Conditions):
    """Triggers that need no parameters."""

    pass


class ThresholdConditions(_Conditions):
    """Rating threshold for rating_below / rating_above."""

    threshold: int = Field(
        ...,
        ge=1,
        le=5,
        validation_alias=AliasChoices("threshold", "minRating", "min_rating"),
    )


class KeywordConditions(_Conditions):
    """Case-insensitive substrings for keyword_match."""

    keywords: tuple[str, ...] = Field(default=())

    @field_validator("keywords", mode="before")
    @classmethod
    def normalize_keywords(cls, v: Any) -> Any:
        return tuple(k.strip().lower() for k in _split_csv(v) if k and k.strip())


TriggerConditions = Union[NoConditions, ThresholdConditions, KeywordConditions]

CONDITION_SCHEMAS: dict[TriggerType, type[_Conditions]] = {
    TriggerType.NEW_REVIEW: NoConditions,
    TriggerType.RATING_BELOW: ThresholdConditions,
    TriggerType.RATING_ABOVE: ThresholdConditions,
    TriggerType.SENTIMENT_NEGATIVE: NoConditions,
    TriggerType.KEYWORD_MATCH: KeywordConditions,
    TriggerType.NO_REPLY_24H: NoConditions,
}


# =============================================================================
# Action configs
# =============================================================================


class _ActionConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)


class EmailAlertConfig(_ActionConfig):
    """Recipients for email_alert."""

    recipients: tuple[str, ...] = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("recipients", "to"),
    )

    @field_validator("recipients", mode="before")
    @classmethod
    def normalize_recipients(cls, v: Any) -> Any:
        recipients = tuple(r.strip() for r in _split_csv(v) if r and r.strip())
        for recipient in recipients:
            if "@" not in recipient:
                raise ValueError(f"Invalid recipient address: {recipient}")
        return recipients


class ChatNotificationConfig(_ActionConfig):
    """Incoming-webhook URL for slack_notification / teams_notification."""

    webhook_url: str = Field(
        ...,
        validation_alias=AliasChoices("webhook_url", "webhookUrl", "channel"),
    )

    @field_validator("webhook_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith(("https://", "http://")):
            raise ValueError("webhook_url must be an http(s) URL")
        return v


class WebhookConfig(_ActionConfig):
    """Target and optional signing secret for webhook."""

    url: str = Field(
        ...,
        validation_alias=AliasChoices("url", "webhook_url", "webhookUrl"),
    )
    secret: str | None = Field(default=None, description="HMAC-SHA256 signing secret")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith(("https://", "http://")):
            raise ValueError("url must be an http(s) URL")
        return v


class TagReviewConfig(_ActionConfig):
    """Tag appended by tag_review."""

    tag: str = Field(..., min_length=1, max_length=50)

    @field_validator("tag")
    @classmethod
    def strip_tag(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("tag must not be blank")
        return v


class AssignReviewConfig(_ActionConfig):
    """Assignee set by assign_review."""

    assignee_id: UUID = Field(
        ...,
        validation_alias=AliasChoices("assignee_id", "assigneeId", "user_id", "userId"),
    )


ActionConfig = Union[
    EmailAlertConfig,
    ChatNotificationConfig,
    WebhookConfig,
    TagReviewConfig,
    AssignReviewConfig,
]

ACTION_SCHEMAS: dict[ActionType, type[_ActionConfig]] = {
    ActionType.EMAIL_ALERT: EmailAlertConfig,
    ActionType.SLACK_NOTIFICATION: ChatNotificationConfig,
    ActionType.TEAMS_NOTIFICATION: ChatNotificationConfig,
    ActionType.WEBHOOK: WebhookConfig,
    ActionType.TAG_REVIEW: TagReviewConfig,
    ActionType.ASSIGN_REVIEW: AssignReviewConfig,
}


def parse_trigger_conditions(
    trigger_type: TriggerType | str,
    raw: dict[str, Any] | None,
    automation_id: str | None = None,
) -> TriggerConditions:
    """Validate a raw conditions payload against its trigger type's schema.

    Raises:
        InvalidAutomationError: Unknown trigger type or payload mismatch
    """
    try:
        trigger_type = TriggerType(trigger_type)
    except ValueError:
        raise InvalidAutomationError(automation_id, f"unknown trigger type '{trigger_type}'")

    schema = CONDITION_SCHEMAS[trigger_type]
    try:
        return schema.model_validate(raw or {})
    except ValidationError as e:
        errors = e.errors()
        raise InvalidAutomationError(
            automation_id,
            f"conditions do not match '{trigger_type.value}' schema",
            errors=[{"loc": list(err["loc"]), "msg": err["msg"]} for err in errors],
        ) from e


def parse_action_config(
    action_type: ActionType | str,
    raw: dict[str, Any] | None,
    automation_id: str | None = None,
) -> ActionConfig:
    """Validate a raw action config against its action type's schema.

    Raises:
        InvalidAutomationError: Unknown action type or missing required fields
    """
    try:
        action_type = ActionType(action_type)
    except ValueError:
        raise InvalidAutomationError(automation_id, f"unknown action type '{action_type}'")

    schema = ACTION_SCHEMAS[action_type]
    try:
        return schema.model_validate(raw or {})
    except ValidationError as e:
        errors = e.errors()
        raise InvalidAutomationError(
            automation_id,
            f"action config does not match '{action_type.value}' schema",
            errors=[{"loc": list(err["loc"]), "msg": err["msg"]} for err in errors],
        ) from e


# =============================================================================
# Automation rule
# =============================================================================


class AutomationRule(BaseModel):
    """A validated, tenant-scoped automation as seen by the engine."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    tenant_id: UUID
    name: str
    is_active: bool = True
    trigger_type: TriggerType
    conditions: TriggerConditions
    action_type: ActionType
    action_config: ActionConfig
    last_triggered_at: datetime | None = None
    trigger_count: int = Field(default=0, ge=0)

    @classmethod
    def build(
        cls,
        *,
        id: UUID,
        tenant_id: UUID,
        name: str,
        trigger_type: TriggerType | str,
        trigger_conditions: dict[str, Any] | None,
        action_type: ActionType | str,
        action_config: dict[str, Any] | None,
        is_active: bool = True,
        last_triggered_at: datetime | None = None,
        trigger_count: int = 0,
    ) -> AutomationRule:
        """Validate raw payloads and build a rule.

        Raises:
            InvalidAutomationError: Payloads do not satisfy their schemas
        """
        rule_id = str(id) if id is not None else None
        conditions = parse_trigger_conditions(trigger_type, trigger_conditions, rule_id)
        config = parse_action_config(action_type, action_config, rule_id)
        return cls(
            id=id,
            tenant_id=tenant_id,
            name=name,
            is_active=is_active,
            trigger_type=TriggerType(trigger_type),
            conditions=conditions,
            action_type=ActionType(action_type),
            action_config=config,
            last_triggered_at=last_triggered_at,
            trigger_count=trigger_count or 0,
        )

    def reference(self) -> dict[str, str]:
        """Identity sent to outbound endpoints."""
        return {"id": str(self.id), "name": self.name}


# =============================================================================
# Events
# =============================================================================


class ReviewSnapshot(BaseModel):
    """Review state at the time an event was produced."""

    model_config = ConfigDict(frozen=True)

    rating: int | None = Field(default=None, ge=1, le=5)
    sentiment: str | None = Field(default=None, description="Upstream-provided sentiment label")
    body: str | None = None
    platform: str | None = None
    author_name: str | None = None
    needs_action: bool = False
    replied_at: datetime | None = None
    created_at: datetime | None = None

    @field_validator("replied_at", "created_at")
    @classmethod
    def normalize_timestamps(cls, v: datetime | None) -> datetime | None:
        return _to_naive_utc(v)

    @field_validator("sentiment", "platform")
    @classmethod
    def lowercase_labels(cls, v: str | None) -> str | None:
        return v.strip().lower() if v else v

    def content_hash(self) -> str:
        """Stable digest used as a version marker when none is supplied."""
        payload = json.dumps(self.model_dump(mode="json"), sort_keys=True)
        return hashlib.sha256(payload.encode()).hexdigest()[:16]


class Event(BaseModel):
    """Immutable occurrence fed into the engine.

    Redelivery of the same occurrence carries the same review_id, kind and
    version, which is what the delivery ledger fingerprints on.
    """

    model_config = ConfigDict(frozen=True)

    event_id: UUID = Field(default_factory=uuid4)
    tenant_id: UUID
    review_id: UUID
    kind: EventKind
    version: str = Field(..., min_length=1, max_length=64)
    snapshot: ReviewSnapshot
    occurred_at: datetime = Field(default_factory=utcnow)

    @field_validator("occurred_at")
    @classmethod
    def normalize_occurred_at(cls, v: datetime) -> datetime:
        return _to_naive_utc(v)

    def to_payload(self) -> dict[str, Any]:
        """JSON-safe representation for outbound requests."""
        return self.model_dump(mode="json")


@dataclass(frozen=True)
class Match:
    """An (automation, event) pair that satisfied its conditions."""

    automation: AutomationRule
    event: Event


@dataclass
class MatchSet:
    """Ephemeral per-event list of matches. Never persisted."""

    event: Event
    matches: list[Match] = field(default_factory=list)

    def __iter__(self) -> Iterator[Match]:
        return iter(self.matches)

    def __len__(self) -> int:
        return len(self.matches)

    @property
    def automation_ids(self) -> list[UUID]:
        return [m.automation.id for m in self.matches]
