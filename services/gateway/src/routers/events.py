"""Review-sync event intake.

Review sync posts here after persisting a review change. The event is
queued and the call returns immediately; automations run in the background.
"""

from __future__ import annotations

from uuid import UUID

import structlog
from fastapi import APIRouter, Depends

from packages.automation.src.ingestion import EventIngestionAdapter

from ..dependencies import get_ingestion
from ..schemas.events import EventAccepted, EventPublish

logger = structlog.get_logger()
router = APIRouter()


@router.post("/{tenant_id}/events", response_model=EventAccepted, status_code=202)
async def publish_event(
    tenant_id: UUID,
    data: EventPublish,
    ingestion: EventIngestionAdapter = Depends(get_ingestion),
) -> EventAccepted:
    """Queue a review event for automation processing."""
    event = await ingestion.publish_event(
        tenant_id,
        data.review_id,
        data.kind,
        data.snapshot.model_dump(),
        version=data.version,
    )
    logger.info(
        "event_accepted",
        tenant_id=str(tenant_id),
        review_id=str(data.review_id),
        kind=event.kind.value,
    )

    return EventAccepted(
        event_id=event.event_id,
        review_id=event.review_id,
        kind=event.kind.value,
        version=event.version,
    )
