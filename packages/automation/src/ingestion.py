"""Event ingestion adapter.

Receives review-lifecycle notifications from review sync (created, updated,
replied, sentiment-enriched), normalizes them into Events and hands them to
the engine. Upstream delivery is at-least-once; duplicates carry the same
review id, kind and version and are absorbed by the delivery ledger.

Events whose automations could not be loaded are redelivered with
exponential backoff.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from pydantic import ValidationError

from packages.core.src.errors import EngineNotRunningError, InvalidEventError
from packages.core.src.types import Event, EventKind, ReviewSnapshot
from packages.database.src.models import Review
from packages.database.src.repositories import review_to_snapshot

from .engine import AutomationEngine

logger = structlog.get_logger()

# Review-sync notification kinds -> canonical event kinds
SYNC_KINDS: dict[str, EventKind] = {
    "created": EventKind.CREATED,
    "updated": EventKind.UPDATED,
    "replied": EventKind.UPDATED,
    "sentiment_enriched": EventKind.UPDATED,
}

CREATED_VERSION = "created"


def normalize_kind(kind: str | EventKind) -> EventKind:
    """Map a review-sync kind to a canonical event kind.

    Raises:
        InvalidEventError: Unknown kind (no_reply_elapsed is scanner-only)
    """
    key = str(getattr(kind, "value", kind)).strip().lower().replace("-", "_").replace(" ", "_")
    try:
        return SYNC_KINDS[key]
    except KeyError:
        raise InvalidEventError(f"unsupported event kind '{kind}'", kind=str(kind))


def build_event(
    tenant_id: UUID,
    review_id: UUID,
    kind: str | EventKind,
    snapshot: ReviewSnapshot | dict[str, Any],
    version: str | None = None,
    event_id: UUID | None = None,
    occurred_at: datetime | None = None,
) -> Event:
    """Normalize a review-sync notification into an Event.

    Version markers: a creation is one occurrence per review, so its marker
    is constant; an update without an explicit marker is versioned by the
    content of its snapshot, so re-sent identical updates deduplicate.

    Raises:
        InvalidEventError: Unknown kind or malformed snapshot
    """
    canonical = normalize_kind(kind)

    if not isinstance(snapshot, ReviewSnapshot):
        try:
            snapshot = ReviewSnapshot.model_validate(snapshot)
        except ValidationError as e:
            raise InvalidEventError(f"malformed review snapshot: {e.error_count()} errors") from e

    if not version:
        version = CREATED_VERSION if canonical is EventKind.CREATED else snapshot.content_hash()

    fields: dict[str, Any] = {
        "tenant_id": tenant_id,
        "review_id": review_id,
        "kind": canonical,
        "version": version[:64],
        "snapshot": snapshot,
    }
    if event_id is not None:
        fields["event_id"] = event_id
    if occurred_at is not None:
        fields["occurred_at"] = occurred_at
    return Event(**fields)


class EventIngestionAdapter:
    """PublishEvent surface for review sync."""

    def __init__(
        self,
        engine: AutomationEngine,
        *,
        max_attempts: int = 5,
        backoff_seconds: float = 1.0,
        max_backoff_seconds: float = 300.0,
    ):
        self._engine = engine
        self._max_attempts = max_attempts
        self._backoff = backoff_seconds
        self._max_backoff = max_backoff_seconds
        self._redeliveries: set[asyncio.Task] = set()
        engine.set_failure_handler(self.handle_processing_failure)

    @property
    def pending_redeliveries(self) -> int:
        return len(self._redeliveries)

    async def publish_event(
        self,
        tenant_id: UUID,
        review_id: UUID,
        kind: str | EventKind,
        snapshot: ReviewSnapshot | dict[str, Any],
        version: str | None = None,
    ) -> Event:
        """Normalize and enqueue an event. Fire-and-forget.

        Raises:
            InvalidEventError: Notification cannot be normalized
            EngineNotRunningError: Engine is not accepting events
        """
        event = build_event(tenant_id, review_id, kind, snapshot, version)
        await self._engine.submit(event)
        logger.debug(
            "event_published",
            event_id=str(event.event_id),
            tenant_id=str(tenant_id),
            review_id=str(review_id),
            kind=event.kind.value,
            version=event.version,
        )
        return event

    async def publish_review(
        self,
        review: Review,
        kind: str | EventKind,
        version: str | None = None,
    ) -> Event:
        """Publish straight from a stored review row."""
        return await self.publish_event(
            review.tenant_id, review.id, kind, review_to_snapshot(review), version
        )

    async def handle_processing_failure(self, event: Event, attempt: int, error: Exception) -> None:
        """Schedule a redelivery of an event the engine could not process."""
        if attempt >= self._max_attempts:
            logger.error(
                "event_redelivery_exhausted",
                event_id=str(event.event_id),
                tenant_id=str(event.tenant_id),
                review_id=str(event.review_id),
                attempts=attempt,
                error=str(error),
            )
            return

        delay = min(self._backoff * 2 ** (attempt - 1), self._max_backoff)
        logger.info(
            "event_redelivery_scheduled",
            event_id=str(event.event_id),
            attempt=attempt + 1,
            delay_seconds=delay,
        )
        task = asyncio.create_task(self._redeliver(event, attempt + 1, delay))
        self._redeliveries.add(task)
        task.add_done_callback(self._redeliveries.discard)

    async def _redeliver(self, event: Event, attempt: int, delay: float) -> None:
        await asyncio.sleep(delay)
        try:
            await self._engine.submit(event, attempt=attempt)
        except EngineNotRunningError:
            logger.warning("event_redelivery_dropped", event_id=str(event.event_id), reason="shutdown")

    async def close(self) -> None:
        """Cancel pending redeliveries."""
        for task in list(self._redeliveries):
            task.cancel()
        await asyncio.gather(*self._redeliveries, return_exceptions=True)
        self._redeliveries.clear()
