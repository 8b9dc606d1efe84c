"""Condition evaluator.

Maps (trigger type, conditions, event) to a match decision. Pure: no I/O and
no wall-clock reads. Time-based triggers only ever see the no_reply_elapsed
events synthesized by the scanner.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from packages.core.src.errors import ConditionEvaluationError, InvalidAutomationError
from packages.core.src.types import (
    CONDITION_SCHEMAS,
    TRIGGER_EVENT_KINDS,
    Event,
    EventKind,
    KeywordConditions,
    ThresholdConditions,
    TriggerConditions,
    TriggerType,
    parse_trigger_conditions,
)


def _new_review(conditions: TriggerConditions, event: Event) -> bool:
    return event.kind is EventKind.CREATED


def _rating_below(conditions: ThresholdConditions, event: Event) -> bool:
    rating = event.snapshot.rating
    return rating is not None and rating < conditions.threshold


def _rating_above(conditions: ThresholdConditions, event: Event) -> bool:
    rating = event.snapshot.rating
    return rating is not None and rating > conditions.threshold


def _sentiment_negative(conditions: TriggerConditions, event: Event) -> bool:
    return event.snapshot.sentiment == "negative"


def _keyword_match(conditions: KeywordConditions, event: Event) -> bool:
    if not conditions.keywords:
        return False
    body = (event.snapshot.body or "").lower()
    return any(keyword in body for keyword in conditions.keywords)


def _no_reply(conditions: TriggerConditions, event: Event) -> bool:
    return event.kind is EventKind.NO_REPLY_ELAPSED


EVALUATORS: dict[TriggerType, Callable[[Any, Event], bool]] = {
    TriggerType.NEW_REVIEW: _new_review,
    TriggerType.RATING_BELOW: _rating_below,
    TriggerType.RATING_ABOVE: _rating_above,
    TriggerType.SENTIMENT_NEGATIVE: _sentiment_negative,
    TriggerType.KEYWORD_MATCH: _keyword_match,
    TriggerType.NO_REPLY_24H: _no_reply,
}


def is_compatible(trigger_type: TriggerType, kind: EventKind) -> bool:
    """Whether a trigger type can ever match an event of this kind."""
    return kind in TRIGGER_EVENT_KINDS[trigger_type]


def evaluate(
    trigger_type: TriggerType | str,
    conditions: TriggerConditions | Mapping[str, Any] | None,
    event: Event,
) -> bool:
    """Decide whether an event satisfies a trigger.

    Args:
        trigger_type: Trigger type of the automation
        conditions: Parsed condition model, or a raw payload to validate
        event: Event to test

    Returns:
        True if the event matches

    Raises:
        ConditionEvaluationError: Unknown trigger type or malformed conditions
    """
    try:
        trigger_type = TriggerType(trigger_type)
    except ValueError:
        raise ConditionEvaluationError(str(trigger_type), "unknown trigger type")

    if conditions is None or isinstance(conditions, Mapping):
        try:
            conditions = parse_trigger_conditions(trigger_type, dict(conditions or {}))
        except InvalidAutomationError as e:
            raise ConditionEvaluationError(trigger_type.value, e.details["reason"]) from e

    expected = CONDITION_SCHEMAS[trigger_type]
    if not isinstance(conditions, expected):
        raise ConditionEvaluationError(
            trigger_type.value,
            f"expected {expected.__name__}, got {type(conditions).__name__}",
        )

    if not is_compatible(trigger_type, event.kind):
        return False

    # Platform filter applies to every trigger type
    platform = event.snapshot.platform or ""
    if conditions.platforms and platform not in conditions.platforms:
        return False

    return EVALUATORS[trigger_type](conditions, event)
