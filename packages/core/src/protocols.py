"""Review Automations Protocols - Narrow interfaces to the engine's collaborators.

The engine never touches SQLAlchemy or an HTTP mail API directly; it talks to
these protocols. The database package and the SendGrid integration provide
the production implementations, tests provide in-memory ones where useful.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from .types import AutomationRule, DeliveryOutcome, Event, ReviewSnapshot, TriggerType


@runtime_checkable
class AutomationStore(Protocol):
    """Rule Repository as seen by the engine."""

    async def list_active_automations(self, tenant_id: UUID) -> list[AutomationRule]:
        """Active, valid automations for a tenant.

        Raises:
            RepositoryError: Automations could not be loaded
        """
        ...

    async def increment_trigger_counters(self, automation_id: UUID, timestamp: datetime) -> None:
        """Atomically bump trigger_count and set last_triggered_at.

        Raises:
            RepositoryError: Update failed
        """
        ...

    async def list_tenants_with_active_trigger(self, trigger_type: TriggerType) -> list[UUID]:
        """Tenants owning at least one active automation of this trigger type."""
        ...


@runtime_checkable
class ReviewStore(Protocol):
    """Review entity mutations and time-based queries."""

    async def append_tag(self, tenant_id: UUID, review_id: UUID, tag: str) -> bool:
        """Add tag with set-union semantics. Returns False if already present.

        Raises:
            ReviewNotFoundError: Review no longer exists or belongs to another tenant
        """
        ...

    async def set_assignee(self, tenant_id: UUID, review_id: UUID, user_id: UUID) -> None:
        """Assign the review.

        Raises:
            ReviewNotFoundError: Review no longer exists or belongs to another tenant
            InvalidAssigneeError: User is not a member of the tenant
        """
        ...

    async def find_unreplied_reviews(
        self,
        tenant_id: UUID,
        created_before: datetime,
        limit: int = 500,
    ) -> list[tuple[UUID, ReviewSnapshot]]:
        """Reviews needing action, never replied, created before the cutoff."""
        ...

    async def get_snapshot(self, review_id: UUID) -> ReviewSnapshot | None:
        """Current state of a review, or None if it no longer exists."""
        ...


@runtime_checkable
class DeliveryLedgerProtocol(Protocol):
    """Durable idempotency and outcome store."""

    async def has_success(self, fingerprint: str) -> bool:
        ...

    async def acquire_claim(
        self,
        fingerprint: str,
        automation_id: UUID,
        lease_seconds: int,
    ) -> bool:
        """Claim a fingerprint for execution. False if another worker holds it."""
        ...

    async def release_claim(self, fingerprint: str) -> None:
        ...

    async def record(
        self,
        automation: AutomationRule,
        event: Event,
        fingerprint: str,
        outcome: DeliveryOutcome,
        error_detail: str | None = None,
    ) -> Any | None:
        """Insert a DeliveryRecord. None if a success already exists."""
        ...


@runtime_checkable
class MailSender(Protocol):
    """External mail-sending collaborator."""

    async def send_email(
        self,
        to: str,
        subject: str,
        text: str,
        html: str | None = None,
    ) -> str | None:
        """Send one message. Returns the provider message id if known.

        Raises:
            IntegrationError: Provider rejected the message or was unreachable
        """
        ...
