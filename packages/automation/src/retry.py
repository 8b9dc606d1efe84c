"""Retry sweep for failed deliveries.

Re-dispatches automations whose latest attempt for an occurrence failed
within the retry window and never succeeded. The occurrence is rebuilt from
the stored delivery record and the review's current state, so the fingerprint
is unchanged and the ledger still guarantees at most one success.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog

from packages.core.src.errors import ConditionEvaluationError, InvalidAutomationError
from packages.core.src.types import (
    DeliveryOutcome,
    Event,
    EventKind,
    Match,
    MatchSet,
    TriggerType,
    utcnow,
)
from packages.database.src.repositories import (
    AutomationRepository,
    DeliveryLedger,
    ReviewRepository,
    automation_to_rule,
)

from .conditions import evaluate
from .dispatcher import DispatchCoordinator
from .engine import ReviewSequencer
from .fingerprint import compute_fingerprint
from .scanner import run_periodically

logger = structlog.get_logger()


@dataclass
class RetryReport:
    candidates: int = 0
    retried: int = 0
    succeeded: int = 0
    abandoned: int = 0


class RetrySweep:
    """Explicit, out-of-band retry of failed deliveries."""

    def __init__(
        self,
        ledger: DeliveryLedger,
        automations: AutomationRepository,
        reviews: ReviewRepository,
        dispatcher: DispatchCoordinator,
        *,
        window_hours: int = 6,
        max_attempts: int = 3,
        interval_seconds: int = 300,
        sequencer: ReviewSequencer | None = None,
        is_stopping: Callable[[], bool] = lambda: False,
    ):
        self._ledger = ledger
        self._automations = automations
        self._reviews = reviews
        self._dispatcher = dispatcher
        self._window = timedelta(hours=window_hours)
        self._max_attempts = max_attempts
        self.interval_seconds = interval_seconds
        self._sequencer = sequencer or ReviewSequencer()
        self._is_stopping = is_stopping

    async def run_once(self, now: datetime | None = None) -> RetryReport:
        """Retry every eligible failed delivery once."""
        now = now or utcnow()
        report = RetryReport()

        candidates = await self._ledger.list_retry_candidates(now - self._window, self._max_attempts)
        report.candidates = len(candidates)

        for record in candidates:
            if self._is_stopping():
                break

            match = await self._rebuild(record)
            if match is None:
                report.abandoned += 1
                continue

            async with self._sequencer.hold(match.event.review_id):
                records = await self._dispatcher.dispatch(MatchSet(match.event, [match]))

            report.retried += 1
            report.succeeded += sum(1 for r in records if r.outcome == DeliveryOutcome.SUCCESS.value)

        logger.info(
            "retry_sweep_completed",
            candidates=report.candidates,
            retried=report.retried,
            succeeded=report.succeeded,
            abandoned=report.abandoned,
        )
        return report

    async def _rebuild(self, record) -> Match | None:
        """Rebuild the (automation, event) pair behind a failed record, or None."""
        log = logger.bind(
            automation_id=str(record.automation_id),
            review_id=str(record.review_id),
            fingerprint=record.fingerprint[:16],
        )

        row = await self._automations.get(record.tenant_id, record.automation_id)
        if row is None or not row.is_active:
            log.info("retry_abandoned", reason="automation inactive or deleted")
            return None
        try:
            automation = automation_to_rule(row)
        except InvalidAutomationError as e:
            log.info("retry_abandoned", reason=e.details.get("reason"))
            return None

        snapshot = await self._reviews.get_snapshot(record.review_id)
        if snapshot is None:
            log.info("retry_abandoned", reason="review deleted")
            return None

        if automation.trigger_type is TriggerType.NO_REPLY_24H and (
            snapshot.replied_at is not None or not snapshot.needs_action
        ):
            log.info("retry_abandoned", reason="review replied")
            return None

        event = Event(
            event_id=record.event_id,
            tenant_id=record.tenant_id,
            review_id=record.review_id,
            kind=EventKind(record.event_kind),
            version=record.event_version,
            snapshot=snapshot,
        )

        # Rule edited since the failure: a different occurrence identity
        if compute_fingerprint(automation, event) != record.fingerprint:
            log.info("retry_abandoned", reason="automation changed")
            return None

        try:
            matched = evaluate(automation.trigger_type, automation.conditions, event)
        except ConditionEvaluationError:
            matched = False
        if not matched:
            log.info("retry_abandoned", reason="conditions no longer match")
            return None

        return Match(automation=automation, event=event)

    async def run(self) -> None:
        """Sweep loop; runs until cancelled."""
        await run_periodically("retry_sweep", self.interval_seconds, self.run_once, self._is_stopping)
