"""Review-mutating executors: tag_review and assign_review."""

from __future__ import annotations

from packages.core.src.protocols import ReviewStore
from packages.core.src.types import (
    ActionType,
    AssignReviewConfig,
    AutomationRule,
    Event,
    TagReviewConfig,
)

from .base import ActionExecutor, ActionResult


class TagReviewExecutor(ActionExecutor):
    """Appends a tag. Idempotent: an existing tag is left as is."""

    action_type = ActionType.TAG_REVIEW
    config_type = TagReviewConfig

    def __init__(self, reviews: ReviewStore):
        self._reviews = reviews

    async def _execute(
        self,
        config: TagReviewConfig,
        event: Event,
        automation: AutomationRule,
    ) -> ActionResult:
        added = await self._reviews.append_tag(event.tenant_id, event.review_id, config.tag)
        detail = None if added else f"tag '{config.tag}' already present"
        return ActionResult.success(detail, tag=config.tag, added=added)


class AssignReviewExecutor(ActionExecutor):
    """Sets the review's assignee to a tenant member."""

    action_type = ActionType.ASSIGN_REVIEW
    config_type = AssignReviewConfig

    def __init__(self, reviews: ReviewStore):
        self._reviews = reviews

    async def _execute(
        self,
        config: AssignReviewConfig,
        event: Event,
        automation: AutomationRule,
    ) -> ActionResult:
        await self._reviews.set_assignee(event.tenant_id, event.review_id, config.assignee_id)
        return ActionResult.success(assignee_id=str(config.assignee_id))
