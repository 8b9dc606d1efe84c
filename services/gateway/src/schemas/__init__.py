"""API Schemas for Review Automations."""

from .automations import (
    AutomationCreate,
    AutomationListResponse,
    AutomationResponse,
    AutomationUpdate,
    DeliveryListResponse,
    DeliveryResponse,
)
from .events import EventAccepted, EventPublish, ReviewSnapshotPayload

__all__ = [
    # Automations
    "AutomationCreate",
    "AutomationUpdate",
    "AutomationResponse",
    "AutomationListResponse",
    "DeliveryResponse",
    "DeliveryListResponse",
    # Events
    "EventPublish",
    "EventAccepted",
    "ReviewSnapshotPayload",
]
