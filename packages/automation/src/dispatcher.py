"""Dispatch coordinator.

For each matched (automation, event) pair:
1. Compute the fingerprint
2. Skip if the ledger already holds a success for it
3. Claim the fingerprint (durable, unique) so concurrent engines cannot both act
4. Run the executor under a timeout
5. Record the outcome; bump counters after a success only
6. Release the claim

Pairs run concurrently under a per-tenant semaphore. A failure in one pair is
recorded against that pair and never touches its siblings.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any
from uuid import UUID

import structlog

from packages.core.src.errors import RepositoryError
from packages.core.src.protocols import AutomationStore, DeliveryLedgerProtocol
from packages.core.src.types import AutomationRule, DeliveryOutcome, Event, Match, MatchSet, utcnow

from .actions import ActionRegistry, ActionResult
from .fingerprint import compute_fingerprint

logger = structlog.get_logger()


class DispatchCoordinator:
    """Executes matched automations with at-most-once delivery."""

    def __init__(
        self,
        registry: ActionRegistry,
        ledger: DeliveryLedgerProtocol,
        automations: AutomationStore,
        *,
        tenant_concurrency: int = 8,
        action_timeout: float = 5.0,
        claim_lease_seconds: int = 60,
    ):
        self._registry = registry
        self._ledger = ledger
        self._automations = automations
        self._tenant_concurrency = tenant_concurrency
        self._action_timeout = action_timeout
        self._claim_lease_seconds = claim_lease_seconds
        self._tenant_semaphores: dict[UUID, asyncio.Semaphore] = {}
        self._tenant_refs: dict[UUID, int] = {}

    @property
    def active_tenants(self) -> int:
        """Tenants with a pair in flight or waiting for a slot."""
        return len(self._tenant_semaphores)

    @asynccontextmanager
    async def _tenant_slot(self, tenant_id: UUID) -> AsyncIterator[None]:
        """Hold one of the tenant's concurrency slots; the semaphore is dropped once unused."""
        semaphore = self._tenant_semaphores.setdefault(
            tenant_id, asyncio.Semaphore(self._tenant_concurrency)
        )
        self._tenant_refs[tenant_id] = self._tenant_refs.get(tenant_id, 0) + 1
        try:
            async with semaphore:
                yield
        finally:
            self._tenant_refs[tenant_id] -= 1
            if self._tenant_refs[tenant_id] == 0:
                del self._tenant_refs[tenant_id]
                del self._tenant_semaphores[tenant_id]

    async def dispatch(self, match_set: MatchSet) -> list[Any]:
        """Dispatch every pair of a MatchSet.

        Returns:
            DeliveryRecords written by this call. Pairs skipped as duplicates
            write nothing.
        """
        if not match_set:
            return []

        results = await asyncio.gather(
            *(self.dispatch_one(match) for match in match_set),
            return_exceptions=True,
        )

        records = []
        for match, result in zip(match_set, results):
            if isinstance(result, BaseException):
                logger.error(
                    "dispatch_pair_failed",
                    automation_id=str(match.automation.id),
                    review_id=str(match.event.review_id),
                    error=str(result),
                    error_type=type(result).__name__,
                )
            elif result is not None:
                records.append(result)
        return records

    async def dispatch_one(self, match: Match) -> Any | None:
        """Dispatch a single pair.

        Returns:
            The DeliveryRecord written, or None if skipped as a duplicate

        Raises:
            RepositoryError: Ledger unreachable
        """
        automation, event = match.automation, match.event
        fingerprint = compute_fingerprint(automation, event)
        log = logger.bind(
            automation_id=str(automation.id),
            tenant_id=str(event.tenant_id),
            review_id=str(event.review_id),
            fingerprint=fingerprint[:16],
        )

        async with self._tenant_slot(event.tenant_id):
            if await self._ledger.has_success(fingerprint):
                log.debug("dispatch_skipped_duplicate")
                return None

            if not await self._ledger.acquire_claim(
                fingerprint, automation.id, self._claim_lease_seconds
            ):
                log.info("dispatch_skipped_claimed")
                return None

            try:
                # A previous holder may have finished between the check and the claim
                if await self._ledger.has_success(fingerprint):
                    log.debug("dispatch_skipped_duplicate")
                    return None

                result = await self._execute(automation, event)
                record = await self._ledger.record(
                    automation, event, fingerprint, result.outcome, result.detail
                )
            finally:
                await self._release(fingerprint)

        log.info(
            "dispatch_completed",
            action_type=automation.action_type.value,
            outcome=result.outcome.value,
            detail=result.detail,
            execution_time_ms=round(result.execution_time_ms, 2),
        )

        if record is not None and result.succeeded:
            await self._bump_counters(automation.id, getattr(record, "attempted_at", None) or utcnow())
        return record

    async def _execute(self, automation: AutomationRule, event: Event) -> ActionResult:
        executor = self._registry.get(automation.action_type)
        if executor is None:
            return ActionResult.failed(f"no executor for {automation.action_type.value}")

        try:
            return await asyncio.wait_for(
                executor.execute(automation.action_config, event, automation),
                timeout=self._action_timeout,
            )
        except asyncio.TimeoutError:
            return ActionResult.failed(
                f"{automation.action_type.value} timed out after {self._action_timeout}s",
                transient=True,
            )
        except Exception as e:
            logger.exception(
                "action_executor_crashed",
                automation_id=str(automation.id),
                action_type=automation.action_type.value,
            )
            return ActionResult.failed(f"{type(e).__name__}: {e}")

    async def _release(self, fingerprint: str) -> None:
        try:
            await self._ledger.release_claim(fingerprint)
        except RepositoryError as e:
            # The lease expires on its own
            logger.warning("claim_release_failed", fingerprint=fingerprint[:16], error=str(e))

    async def _bump_counters(self, automation_id: UUID, timestamp: datetime) -> None:
        try:
            await self._automations.increment_trigger_counters(automation_id, timestamp)
        except RepositoryError as e:
            # Delivered regardless; counters catch up on the next success
            logger.warning(
                "trigger_counter_update_failed",
                automation_id=str(automation_id),
                error=str(e),
            )
