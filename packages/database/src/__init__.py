"""Database package for Review Automations."""

from .models import (
    Automation,
    Base,
    DeliveryClaim,
    DeliveryRecord,
    Review,
    TenantMember,
)
from .repositories import (
    AutomationRepository,
    DeliveryLedger,
    ReviewRepository,
    automation_to_rule,
    review_to_snapshot,
)
from .session import (
    close_db,
    get_db,
    get_engine,
    get_session_factory,
    init_db,
    resolve_database_url,
)

__all__ = [
    # Models
    "Base",
    "Automation",
    "Review",
    "TenantMember",
    "DeliveryRecord",
    "DeliveryClaim",
    # Repositories
    "AutomationRepository",
    "ReviewRepository",
    "DeliveryLedger",
    "automation_to_rule",
    "review_to_snapshot",
    # Session
    "get_db",
    "get_engine",
    "get_session_factory",
    "init_db",
    "close_db",
    "resolve_database_url",
]
