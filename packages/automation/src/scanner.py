"""Scheduled trigger scanner.

Periodically looks for reviews that still need a reply after the no-reply
threshold and emits no_reply_elapsed events for them. Only tenants owning an
active no_reply_24h automation are queried.

Cycle states: IDLE -> SCANNING -> EMITTING -> IDLE
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

import structlog

from packages.core.src.errors import EngineNotRunningError, RepositoryError
from packages.core.src.protocols import AutomationStore, ReviewStore
from packages.core.src.types import Event, EventKind, TriggerType, utcnow

logger = structlog.get_logger()


class ScannerState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    EMITTING = "emitting"


@dataclass
class ScanReport:
    """Summary of one scan cycle."""

    version: str
    tenants: int = 0
    reviews: int = 0
    emitted: int = 0
    errors: int = 0
    skipped: bool = False


def cycle_version(now: datetime, interval_seconds: int) -> str:
    """Cycle timestamp truncated to the scan interval, as ISO 8601."""
    epoch = int(now.replace(tzinfo=timezone.utc).timestamp())
    floored = epoch - epoch % interval_seconds
    return datetime.fromtimestamp(floored, tz=timezone.utc).replace(tzinfo=None).isoformat()


async def run_periodically(
    name: str,
    interval_seconds: float,
    tick: Callable[[], Awaitable[object]],
    is_stopping: Callable[[], bool],
    error_backoff_seconds: float = 60,
) -> None:
    """Call tick every interval until cancelled.

    A tick that falls while shutdown is in progress is skipped.
    """
    logger.info("periodic_task_started", task=name, interval_seconds=interval_seconds)
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            if is_stopping():
                logger.info("periodic_tick_skipped", task=name, reason="shutdown")
                continue
            await tick()
        except asyncio.CancelledError:
            logger.info("periodic_task_stopped", task=name)
            raise
        except Exception as e:
            logger.error("periodic_tick_failed", task=name, error=str(e), exc_info=True)
            await asyncio.sleep(min(error_backoff_seconds, interval_seconds))


class ScheduledTriggerScanner:
    """Synthesizes no_reply_elapsed events."""

    def __init__(
        self,
        automations: AutomationStore,
        reviews: ReviewStore,
        emit: Callable[[Event], Awaitable[None]],
        *,
        interval_seconds: int = 900,
        threshold_hours: int = 24,
        batch_limit: int = 500,
        is_stopping: Callable[[], bool] = lambda: False,
    ):
        self._automations = automations
        self._reviews = reviews
        self._emit = emit
        self.interval_seconds = interval_seconds
        self._threshold = timedelta(hours=threshold_hours)
        self._batch_limit = batch_limit
        self._is_stopping = is_stopping
        self._state = ScannerState.IDLE
        self.last_report: ScanReport | None = None

    @property
    def state(self) -> ScannerState:
        return self._state

    async def run_cycle(self, now: datetime | None = None) -> ScanReport:
        """Run one scan cycle.

        Args:
            now: Cycle time (naive UTC); defaults to the current time
        """
        now = now or utcnow()
        report = ScanReport(version=cycle_version(now, self.interval_seconds))

        if self._state is not ScannerState.IDLE or self._is_stopping():
            logger.info("scan_cycle_skipped", state=self._state.value)
            report.skipped = True
            return report

        self._state = ScannerState.SCANNING
        try:
            tenants = await self._automations.list_tenants_with_active_trigger(
                TriggerType.NO_REPLY_24H
            )
            report.tenants = len(tenants)
            cutoff = now - self._threshold

            pending: list[Event] = []
            for tenant_id in tenants:
                try:
                    candidates = await self._reviews.find_unreplied_reviews(
                        tenant_id, cutoff, self._batch_limit
                    )
                except RepositoryError as e:
                    report.errors += 1
                    logger.warning("scan_tenant_failed", tenant_id=str(tenant_id), error=str(e))
                    continue

                report.reviews += len(candidates)
                pending.extend(
                    Event(
                        tenant_id=tenant_id,
                        review_id=review_id,
                        kind=EventKind.NO_REPLY_ELAPSED,
                        version=report.version,
                        snapshot=snapshot,
                        occurred_at=now,
                    )
                    for review_id, snapshot in candidates
                )

            self._state = ScannerState.EMITTING
            for event in pending:
                try:
                    await self._emit(event)
                except EngineNotRunningError:
                    logger.info("scan_emit_stopped", remaining=len(pending) - report.emitted)
                    break
                report.emitted += 1
        finally:
            self._state = ScannerState.IDLE

        self.last_report = report
        logger.info(
            "scan_cycle_completed",
            version=report.version,
            tenants=report.tenants,
            reviews=report.reviews,
            emitted=report.emitted,
            errors=report.errors,
        )
        return report

    async def run(self) -> None:
        """Scan loop; runs until cancelled."""
        await run_periodically(
            "no_reply_scanner", self.interval_seconds, self.run_cycle, self._is_stopping
        )
