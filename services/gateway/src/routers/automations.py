"""Automation management API endpoints.

CRUD for a tenant's automation rules plus their delivery history. Every
mutation invalidates the engine's cached rule set for the tenant so the
change applies to the next event.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query

from packages.automation.src.engine import AutomationEngine
from packages.core.src.types import DeliveryOutcome, utcnow
from packages.database.src.models import Automation, DeliveryRecord
from packages.database.src.repositories import AutomationRepository, DeliveryLedger

from ..dependencies import get_automation_repository, get_delivery_ledger, get_engine
from ..errors import ResourceNotFoundError
from ..schemas.automations import (
    AutomationCreate,
    AutomationListResponse,
    AutomationResponse,
    AutomationUpdate,
    DeliveryListResponse,
    DeliveryResponse,
)

logger = structlog.get_logger()
router = APIRouter()


def automation_to_response(automation: Automation) -> AutomationResponse:
    """Convert Automation model to response schema."""
    return AutomationResponse(
        id=automation.id,
        tenant_id=automation.tenant_id,
        name=automation.name,
        description=automation.description,
        is_active=automation.is_active,
        trigger_type=automation.trigger_type,
        trigger_conditions=automation.trigger_conditions or {},
        action_type=automation.action_type,
        action_config=automation.action_config or {},
        last_triggered_at=automation.last_triggered_at,
        trigger_count=automation.trigger_count or 0,
        created_by=automation.created_by,
        created_at=automation.created_at,
        updated_at=automation.updated_at,
    )


def delivery_to_response(record: DeliveryRecord) -> DeliveryResponse:
    return DeliveryResponse(
        id=record.id,
        automation_id=record.automation_id,
        review_id=record.review_id,
        event_id=record.event_id,
        event_kind=record.event_kind,
        event_version=record.event_version,
        outcome=record.outcome,
        error_detail=record.error_detail,
        attempted_at=record.attempted_at,
    )


@router.get("/{tenant_id}/automations", response_model=AutomationListResponse)
async def list_automations(
    tenant_id: UUID,
    active_only: bool = False,
    repository: AutomationRepository = Depends(get_automation_repository),
) -> AutomationListResponse:
    """List all automations for a tenant."""
    automations = await repository.list_for_tenant(tenant_id)
    if active_only:
        automations = [a for a in automations if a.is_active]

    return AutomationListResponse(
        automations=[automation_to_response(a) for a in automations],
        total=len(automations),
        active=sum(1 for a in automations if a.is_active),
    )


@router.post(
    "/{tenant_id}/automations",
    response_model=AutomationResponse,
    status_code=201,
)
async def create_automation(
    tenant_id: UUID,
    data: AutomationCreate,
    repository: AutomationRepository = Depends(get_automation_repository),
    engine: AutomationEngine = Depends(get_engine),
) -> AutomationResponse:
    """Create a new automation."""
    automation = await repository.create(
        tenant_id,
        name=data.name,
        description=data.description,
        trigger_type=data.trigger_type.value,
        trigger_conditions=data.trigger_conditions,
        action_type=data.action_type.value,
        action_config=data.action_config,
        is_active=data.is_active,
        created_by=data.created_by,
    )
    await engine.invalidate_tenant(tenant_id)

    return automation_to_response(automation)


@router.get("/{tenant_id}/automations/{automation_id}", response_model=AutomationResponse)
async def get_automation(
    tenant_id: UUID,
    automation_id: UUID,
    repository: AutomationRepository = Depends(get_automation_repository),
) -> AutomationResponse:
    """Get a specific automation."""
    automation = await repository.get(tenant_id, automation_id)
    if not automation:
        raise ResourceNotFoundError("Automation", str(automation_id))

    return automation_to_response(automation)


@router.put("/{tenant_id}/automations/{automation_id}", response_model=AutomationResponse)
async def update_automation(
    tenant_id: UUID,
    automation_id: UUID,
    data: AutomationUpdate,
    repository: AutomationRepository = Depends(get_automation_repository),
    engine: AutomationEngine = Depends(get_engine),
) -> AutomationResponse:
    """Update an automation. Omitted fields keep their current value."""
    changes = data.model_dump(exclude_unset=True)
    for field_name in ("trigger_type", "action_type"):
        if changes.get(field_name) is not None:
            changes[field_name] = changes[field_name].value

    automation = await repository.update(tenant_id, automation_id, changes)
    if not automation:
        raise ResourceNotFoundError("Automation", str(automation_id))
    await engine.invalidate_tenant(tenant_id)

    return automation_to_response(automation)


@router.delete("/{tenant_id}/automations/{automation_id}", status_code=204)
async def delete_automation(
    tenant_id: UUID,
    automation_id: UUID,
    repository: AutomationRepository = Depends(get_automation_repository),
    engine: AutomationEngine = Depends(get_engine),
) -> None:
    """Delete an automation and its delivery history."""
    deleted = await repository.delete(tenant_id, automation_id)
    if not deleted:
        raise ResourceNotFoundError("Automation", str(automation_id))
    await engine.invalidate_tenant(tenant_id)


@router.get(
    "/{tenant_id}/automations/{automation_id}/deliveries",
    response_model=DeliveryListResponse,
)
async def list_deliveries(
    tenant_id: UUID,
    automation_id: UUID,
    limit: int = Query(default=50, ge=1, le=500),
    outcome: Optional[DeliveryOutcome] = None,
    repository: AutomationRepository = Depends(get_automation_repository),
    ledger: DeliveryLedger = Depends(get_delivery_ledger),
) -> DeliveryListResponse:
    """Recent delivery attempts for an automation, newest first."""
    automation = await repository.get(tenant_id, automation_id)
    if not automation:
        raise ResourceNotFoundError("Automation", str(automation_id))

    records = await ledger.list_recent(automation_id, limit=limit, outcome=outcome)
    counts = await ledger.count_by_outcome(automation_id, since=utcnow() - timedelta(hours=24))

    return DeliveryListResponse(
        deliveries=[delivery_to_response(r) for r in records],
        total=len(records),
        counts=counts,
    )
