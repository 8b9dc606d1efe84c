"""Rule matcher: event -> MatchSet."""

from __future__ import annotations

import structlog

from packages.core.src.errors import ConditionEvaluationError
from packages.core.src.types import Event, Match, MatchSet

from .cache import AutomationCache
from .conditions import evaluate, is_compatible

logger = structlog.get_logger()


class RuleMatcher:
    """Runs the condition evaluator for every active automation of a tenant."""

    def __init__(self, cache: AutomationCache):
        self._cache = cache

    async def match(self, event: Event) -> MatchSet:
        """Build the MatchSet for an event.

        An event matching nothing is a normal outcome. A malformed automation
        is logged and treated as not matching; it never affects the others.

        Raises:
            RepositoryError: Automations for the tenant could not be loaded
        """
        automations = await self._cache.get(event.tenant_id)
        match_set = MatchSet(event=event)

        for automation in automations:
            if not automation.is_active or automation.tenant_id != event.tenant_id:
                continue
            if not is_compatible(automation.trigger_type, event.kind):
                continue

            try:
                matched = evaluate(automation.trigger_type, automation.conditions, event)
            except ConditionEvaluationError as e:
                logger.warning(
                    "condition_evaluation_failed",
                    automation_id=str(automation.id),
                    tenant_id=str(event.tenant_id),
                    trigger_type=automation.trigger_type.value,
                    reason=e.details.get("reason"),
                )
                continue

            if matched:
                match_set.matches.append(Match(automation=automation, event=event))

        logger.debug(
            "event_matched",
            event_id=str(event.event_id),
            review_id=str(event.review_id),
            kind=event.kind.value,
            candidates=len(automations),
            matches=len(match_set),
        )
        return match_set
