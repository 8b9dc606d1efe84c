"""Repositories for the automation engine.

Provides the persistence collaborators the engine depends on:
- AutomationRepository: rule loading, trigger counters, and dashboard CRUD
- ReviewRepository: review mutations (tags, assignee) and no-reply queries
- DeliveryLedger: idempotency claims and the insert-only delivery records

Each operation opens its own short-lived session from the factory so that
concurrent workers never share a session.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import aliased

from packages.core.src.errors import (
    InvalidAssigneeError,
    InvalidAutomationError,
    RepositoryError,
    ReviewNotFoundError,
)
from packages.core.src.types import (
    ActionType,
    AutomationRule,
    DeliveryOutcome,
    Event,
    ReviewSnapshot,
    TriggerType,
    parse_action_config,
    parse_trigger_conditions,
    utcnow,
)

from .models import Automation, DeliveryClaim, DeliveryRecord, Review, TenantMember

logger = structlog.get_logger()

MAX_ERROR_DETAIL_LENGTH = 2000

# Fields the dashboard may change; counters are engine-owned
UPDATABLE_FIELDS = (
    "name",
    "description",
    "is_active",
    "trigger_type",
    "trigger_conditions",
    "action_type",
    "action_config",
)


def automation_to_rule(row: Automation) -> AutomationRule:
    """Validate a stored automation into an engine rule.

    Raises:
        InvalidAutomationError: Stored payloads no longer satisfy their schema
    """
    return AutomationRule.build(
        id=row.id,
        tenant_id=row.tenant_id,
        name=row.name,
        trigger_type=row.trigger_type,
        trigger_conditions=row.trigger_conditions,
        action_type=row.action_type,
        action_config=row.action_config,
        is_active=bool(row.is_active),
        last_triggered_at=row.last_triggered_at,
        trigger_count=row.trigger_count or 0,
    )


def review_to_snapshot(review: Review) -> ReviewSnapshot:
    """Snapshot of a stored review."""
    rating = review.rating if review.rating is not None and 1 <= review.rating <= 5 else None
    return ReviewSnapshot(
        rating=rating,
        sentiment=review.sentiment,
        body=review.body,
        platform=review.platform,
        author_name=review.author_name,
        needs_action=bool(review.needs_action),
        replied_at=review.replied_at,
        created_at=review.created_at,
    )


class AutomationRepository:
    """Rule Repository: engine reads, counter updates, and tenant CRUD."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Engine surface
    # ------------------------------------------------------------------

    async def list_active_automations(self, tenant_id: UUID) -> list[AutomationRule]:
        """Load active automations for a tenant, skipping invalid ones.

        Raises:
            RepositoryError: Query failed
        """
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(Automation)
                    .where(Automation.tenant_id == tenant_id, Automation.is_active.is_(True))
                    .order_by(Automation.created_at)
                )
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise RepositoryError("list_active_automations", cause=e) from e

        rules = []
        for row in rows:
            try:
                rules.append(automation_to_rule(row))
            except InvalidAutomationError as e:
                logger.warning(
                    "automation_invalid_skipped",
                    automation_id=str(row.id),
                    tenant_id=str(tenant_id),
                    reason=e.details.get("reason"),
                )
        return rules

    async def increment_trigger_counters(self, automation_id: UUID, timestamp: datetime) -> None:
        """Bump trigger_count and set last_triggered_at in one statement.

        Raises:
            RepositoryError: Update failed
        """
        try:
            async with self._session_factory() as session:
                await session.execute(
                    update(Automation)
                    .where(Automation.id == automation_id)
                    .values(
                        trigger_count=Automation.trigger_count + 1,
                        last_triggered_at=timestamp,
                        # Counter bumps are not user edits
                        updated_at=Automation.updated_at,
                    )
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise RepositoryError("increment_trigger_counters", cause=e) from e

    async def list_tenants_with_active_trigger(self, trigger_type: TriggerType) -> list[UUID]:
        """Tenants owning at least one active automation of this trigger type."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(Automation.tenant_id)
                    .where(
                        Automation.trigger_type == trigger_type.value,
                        Automation.is_active.is_(True),
                    )
                    .distinct()
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise RepositoryError("list_tenants_with_active_trigger", cause=e) from e

    # ------------------------------------------------------------------
    # Dashboard CRUD
    # ------------------------------------------------------------------

    async def create(
        self,
        tenant_id: UUID,
        *,
        name: str,
        trigger_type: str,
        action_type: str,
        trigger_conditions: dict[str, Any] | None = None,
        action_config: dict[str, Any] | None = None,
        description: str | None = None,
        is_active: bool = True,
        created_by: UUID | None = None,
    ) -> Automation:
        """Validate and persist a new automation.

        Raises:
            InvalidAutomationError: Payloads do not satisfy their schemas
        """
        trigger, conditions, action, config = _validate_payloads(
            trigger_type, trigger_conditions, action_type, action_config
        )

        automation = Automation(
            tenant_id=tenant_id,
            name=name,
            description=description,
            is_active=is_active,
            trigger_type=trigger,
            trigger_conditions=conditions,
            action_type=action,
            action_config=config,
            trigger_count=0,
            created_by=created_by,
        )
        async with self._session_factory() as session:
            session.add(automation)
            await session.commit()
            await session.refresh(automation)

        logger.info(
            "automation_created",
            automation_id=str(automation.id),
            tenant_id=str(tenant_id),
            trigger_type=automation.trigger_type,
            action_type=automation.action_type,
        )
        return automation

    async def get(self, tenant_id: UUID, automation_id: UUID) -> Automation | None:
        """Get a tenant's automation by ID."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Automation).where(
                    Automation.id == automation_id,
                    Automation.tenant_id == tenant_id,
                )
            )
            return result.scalar_one_or_none()

    async def list_for_tenant(self, tenant_id: UUID) -> list[Automation]:
        """All of a tenant's automations, newest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Automation)
                .where(Automation.tenant_id == tenant_id)
                .order_by(Automation.created_at.desc())
            )
            return list(result.scalars().all())

    async def update(
        self,
        tenant_id: UUID,
        automation_id: UUID,
        changes: dict[str, Any],
    ) -> Automation | None:
        """Apply a partial update, re-validating the merged rule.

        Returns:
            Updated automation, or None if it does not exist for this tenant

        Raises:
            InvalidAutomationError: Merged payloads do not satisfy their schemas
        """
        async with self._session_factory() as session:
            result = await session.execute(
                select(Automation).where(
                    Automation.id == automation_id,
                    Automation.tenant_id == tenant_id,
                )
            )
            automation = result.scalar_one_or_none()
            if automation is None:
                return None

            merged = {f: getattr(automation, f) for f in UPDATABLE_FIELDS}
            merged.update({k: v for k, v in changes.items() if k in UPDATABLE_FIELDS})

            (
                merged["trigger_type"],
                merged["trigger_conditions"],
                merged["action_type"],
                merged["action_config"],
            ) = _validate_payloads(
                merged["trigger_type"],
                merged["trigger_conditions"],
                merged["action_type"],
                merged["action_config"],
                automation_id=str(automation_id),
            )

            for field_name, value in merged.items():
                setattr(automation, field_name, value)
            await session.commit()
            await session.refresh(automation)

        logger.info(
            "automation_updated",
            automation_id=str(automation_id),
            tenant_id=str(tenant_id),
            fields=sorted(k for k in changes if k in UPDATABLE_FIELDS),
        )
        return automation

    async def delete(self, tenant_id: UUID, automation_id: UUID) -> bool:
        """Delete an automation and its delivery history."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Automation).where(
                    Automation.id == automation_id,
                    Automation.tenant_id == tenant_id,
                )
            )
            automation = result.scalar_one_or_none()
            if automation is None:
                return False

            await session.execute(
                delete(DeliveryRecord).where(DeliveryRecord.automation_id == automation_id)
            )
            await session.delete(automation)
            await session.commit()

        logger.info("automation_deleted", automation_id=str(automation_id), tenant_id=str(tenant_id))
        return True


def _validate_payloads(
    trigger_type: str,
    trigger_conditions: dict[str, Any] | None,
    action_type: str,
    action_config: dict[str, Any] | None,
    automation_id: str | None = None,
) -> tuple[str, dict[str, Any], str, dict[str, Any]]:
    """Validate raw payloads and return their canonical stored form.

    Raises:
        InvalidAutomationError: Unknown type or payload mismatch
    """
    conditions = parse_trigger_conditions(trigger_type, trigger_conditions, automation_id)
    config = parse_action_config(action_type, action_config, automation_id)
    return (
        TriggerType(trigger_type).value,
        conditions.model_dump(mode="json", exclude_defaults=True),
        ActionType(action_type).value,
        config.model_dump(mode="json", exclude_defaults=True),
    )


class ReviewRepository:
    """Review store operations used by the review-mutating actions and the scanner."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_snapshot(self, review_id: UUID) -> ReviewSnapshot | None:
        async with self._session_factory() as session:
            review = await session.get(Review, review_id)
            return review_to_snapshot(review) if review is not None else None

    async def _get_for_update(self, session: AsyncSession, tenant_id: UUID, review_id: UUID) -> Review:
        result = await session.execute(
            select(Review)
            .where(Review.id == review_id, Review.tenant_id == tenant_id)
            .with_for_update()
        )
        review = result.scalar_one_or_none()
        if review is None:
            raise ReviewNotFoundError(str(review_id))
        return review

    async def append_tag(self, tenant_id: UUID, review_id: UUID, tag: str) -> bool:
        """Set-union a tag into the review's tags.

        Returns:
            True if the tag was added, False if already present

        Raises:
            ReviewNotFoundError: Review no longer exists or belongs to another tenant
        """
        async with self._session_factory() as session:
            review = await self._get_for_update(session, tenant_id, review_id)

            tags = list(review.tags or [])
            if tag in tags:
                return False
            review.tags = [*tags, tag]
            await session.commit()
        return True

    async def set_assignee(self, tenant_id: UUID, review_id: UUID, user_id: UUID) -> None:
        """Assign a tenant's review to a member of that tenant.

        Raises:
            ReviewNotFoundError: Review no longer exists or belongs to another tenant
            InvalidAssigneeError: User is not a member of the tenant
        """
        async with self._session_factory() as session:
            review = await self._get_for_update(session, tenant_id, review_id)

            member = await session.execute(
                select(TenantMember.id).where(
                    TenantMember.tenant_id == tenant_id,
                    TenantMember.user_id == user_id,
                )
            )
            if member.first() is None:
                raise InvalidAssigneeError(str(user_id), str(tenant_id))

            review.assigned_to = user_id
            await session.commit()

    async def find_unreplied_reviews(
        self,
        tenant_id: UUID,
        created_before: datetime,
        limit: int = 500,
    ) -> list[tuple[UUID, ReviewSnapshot]]:
        """Reviews still needing action, never replied, created before the cutoff.

        Raises:
            RepositoryError: Query failed
        """
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(Review)
                    .where(
                        Review.tenant_id == tenant_id,
                        Review.needs_action.is_(True),
                        Review.replied_at.is_(None),
                        Review.created_at < created_before,
                    )
                    .order_by(Review.created_at)
                    .limit(limit)
                )
                return [(r.id, review_to_snapshot(r)) for r in result.scalars().all()]
        except SQLAlchemyError as e:
            raise RepositoryError("find_unreplied_reviews", cause=e) from e


class DeliveryLedger:
    """Idempotency ledger.

    Two tables back it:
    - delivery_claims: one in-flight claim per fingerprint, with a lease
    - delivery_records: insert-only outcomes; the partial unique index on
      successful fingerprints is the final at-most-once guard
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def has_success(self, fingerprint: str) -> bool:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(DeliveryRecord.id)
                    .where(
                        DeliveryRecord.fingerprint == fingerprint,
                        DeliveryRecord.outcome == DeliveryOutcome.SUCCESS.value,
                    )
                    .limit(1)
                )
                return result.first() is not None
        except SQLAlchemyError as e:
            raise RepositoryError("has_success", cause=e) from e

    async def acquire_claim(
        self,
        fingerprint: str,
        automation_id: UUID,
        lease_seconds: float,
        now: datetime | None = None,
    ) -> bool:
        """Claim a fingerprint for execution.

        Returns:
            True if this caller holds the claim, False if another holder does

        Raises:
            RepositoryError: Ledger unreachable
        """
        now = now or utcnow()
        try:
            async with self._session_factory() as session:
                # Expired claims belong to workers that died mid-action
                await session.execute(
                    delete(DeliveryClaim).where(
                        DeliveryClaim.fingerprint == fingerprint,
                        DeliveryClaim.expires_at <= now,
                    )
                )
                session.add(
                    DeliveryClaim(
                        fingerprint=fingerprint,
                        automation_id=automation_id,
                        claimed_at=now,
                        expires_at=now + timedelta(seconds=lease_seconds),
                    )
                )
                try:
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    return False
        except SQLAlchemyError as e:
            raise RepositoryError("acquire_claim", cause=e) from e
        return True

    async def release_claim(self, fingerprint: str) -> None:
        try:
            async with self._session_factory() as session:
                await session.execute(
                    delete(DeliveryClaim).where(DeliveryClaim.fingerprint == fingerprint)
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise RepositoryError("release_claim", cause=e) from e

    async def record(
        self,
        automation: AutomationRule,
        event: Event,
        fingerprint: str,
        outcome: DeliveryOutcome,
        error_detail: str | None = None,
    ) -> DeliveryRecord | None:
        """Insert a delivery record.

        Returns:
            The stored record, or None when a success for this fingerprint
            already exists (the insert lost the race)

        Raises:
            RepositoryError: Insert failed for any other reason
        """
        if error_detail and len(error_detail) > MAX_ERROR_DETAIL_LENGTH:
            error_detail = error_detail[:MAX_ERROR_DETAIL_LENGTH]

        row = DeliveryRecord(
            automation_id=automation.id,
            tenant_id=event.tenant_id,
            review_id=event.review_id,
            event_id=event.event_id,
            event_kind=event.kind.value,
            event_version=event.version,
            fingerprint=fingerprint,
            outcome=outcome.value,
            error_detail=error_detail or None,
            attempted_at=utcnow(),
        )
        try:
            async with self._session_factory() as session:
                session.add(row)
                try:
                    await session.commit()
                except IntegrityError as e:
                    await session.rollback()
                    if outcome is not DeliveryOutcome.SUCCESS or not await self.has_success(fingerprint):
                        raise RepositoryError("record_delivery", cause=e) from e
                    logger.warning(
                        "delivery_success_already_recorded",
                        fingerprint=fingerprint,
                        automation_id=str(automation.id),
                    )
                    return None
        except SQLAlchemyError as e:
            raise RepositoryError("record_delivery", cause=e) from e
        return row

    async def list_recent(
        self,
        automation_id: UUID,
        limit: int = 50,
        outcome: DeliveryOutcome | None = None,
    ) -> list[DeliveryRecord]:
        """Most recent delivery records for an automation."""
        stmt = select(DeliveryRecord).where(DeliveryRecord.automation_id == automation_id)
        if outcome is not None:
            stmt = stmt.where(DeliveryRecord.outcome == outcome.value)
        stmt = stmt.order_by(DeliveryRecord.attempted_at.desc()).limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def count_by_outcome(self, automation_id: UUID, since: datetime) -> dict[str, int]:
        """Outcome counts for an automation since a point in time."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(DeliveryRecord.outcome, func.count(DeliveryRecord.id))
                .where(
                    DeliveryRecord.automation_id == automation_id,
                    DeliveryRecord.attempted_at >= since,
                )
                .group_by(DeliveryRecord.outcome)
            )
            counts = {o.value: 0 for o in DeliveryOutcome}
            counts.update({outcome: count for outcome, count in result.all()})
            return counts

    async def list_retry_candidates(
        self,
        since: datetime,
        max_attempts: int,
        limit: int = 200,
    ) -> list[DeliveryRecord]:
        """Latest failed record per fingerprint still eligible for retry.

        A fingerprint is eligible when it failed since the cutoff, has no
        success, and has fewer than max_attempts failures in the window.

        Raises:
            RepositoryError: Query failed
        """
        succeeded = aliased(DeliveryRecord)
        no_success = ~(
            select(succeeded.id)
            .where(
                succeeded.fingerprint == DeliveryRecord.fingerprint,
                succeeded.outcome == DeliveryOutcome.SUCCESS.value,
            )
            .exists()
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(DeliveryRecord.fingerprint)
                    .where(
                        DeliveryRecord.outcome == DeliveryOutcome.FAILED.value,
                        DeliveryRecord.attempted_at >= since,
                        no_success,
                    )
                    .group_by(DeliveryRecord.fingerprint)
                    .having(func.count(DeliveryRecord.id) < max_attempts)
                    .limit(limit)
                )
                fingerprints = list(result.scalars().all())
                if not fingerprints:
                    return []

                rows = await session.execute(
                    select(DeliveryRecord)
                    .where(
                        DeliveryRecord.fingerprint.in_(fingerprints),
                        DeliveryRecord.outcome == DeliveryOutcome.FAILED.value,
                    )
                    .order_by(DeliveryRecord.attempted_at.desc())
                )
                latest: dict[str, DeliveryRecord] = {}
                for row in rows.scalars().all():
                    latest.setdefault(row.fingerprint, row)
                return list(latest.values())
        except SQLAlchemyError as e:
            raise RepositoryError("list_retry_candidates", cause=e) from e
