"""Automation API schemas.

Accepts the dashboard's camelCase field names as well as snake_case.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from packages.core.src.types import ActionType, TriggerType


class AutomationCreate(BaseModel):
    """Schema for creating an automation."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=200, description="Automation name")
    description: Optional[str] = Field(default=None, description="Automation description")
    trigger_type: TriggerType = Field(
        ..., validation_alias=AliasChoices("trigger_type", "triggerType")
    )
    trigger_conditions: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("trigger_conditions", "triggerConditions"),
        description="Shape depends on trigger_type",
    )
    action_type: ActionType = Field(
        ..., validation_alias=AliasChoices("action_type", "actionType")
    )
    action_config: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("action_config", "actionConfig"),
        description="Shape depends on action_type",
    )
    is_active: bool = Field(default=True, validation_alias=AliasChoices("is_active", "isActive"))
    created_by: Optional[UUID] = Field(
        default=None, validation_alias=AliasChoices("created_by", "createdBy")
    )


class AutomationUpdate(BaseModel):
    """Schema for updating an automation. Omitted fields are left unchanged."""

    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    trigger_type: Optional[TriggerType] = Field(
        default=None, validation_alias=AliasChoices("trigger_type", "triggerType")
    )
    trigger_conditions: Optional[dict[str, Any]] = Field(
        default=None, validation_alias=AliasChoices("trigger_conditions", "triggerConditions")
    )
    action_type: Optional[ActionType] = Field(
        default=None, validation_alias=AliasChoices("action_type", "actionType")
    )
    action_config: Optional[dict[str, Any]] = Field(
        default=None, validation_alias=AliasChoices("action_config", "actionConfig")
    )
    is_active: Optional[bool] = Field(
        default=None, validation_alias=AliasChoices("is_active", "isActive")
    )


class AutomationResponse(BaseModel):
    """Schema for automation response."""

    id: UUID
    tenant_id: UUID
    name: str
    description: Optional[str]
    is_active: bool
    trigger_type: str
    trigger_conditions: dict[str, Any]
    action_type: str
    action_config: dict[str, Any]
    last_triggered_at: Optional[datetime]
    trigger_count: int
    created_by: Optional[UUID]
    created_at: datetime
    updated_at: Optional[datetime]


class AutomationListResponse(BaseModel):
    """Schema for automation list response."""

    automations: list[AutomationResponse]
    total: int
    active: int


class DeliveryResponse(BaseModel):
    """One delivery attempt."""

    id: UUID
    automation_id: UUID
    review_id: UUID
    event_id: UUID
    event_kind: str
    event_version: str
    outcome: str
    error_detail: Optional[str]
    attempted_at: datetime


class DeliveryListResponse(BaseModel):
    """Recent deliveries with outcome counts over the last day."""

    deliveries: list[DeliveryResponse]
    total: int
    counts: dict[str, int]
