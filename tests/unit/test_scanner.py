"""Unit tests for the scheduled no-reply scanner."""

from __future__ import annotations

from datetime import datetime, timedelta

import httpx
import pytest

from packages.automation.src.actions import build_action_registry
from packages.automation.src.cache import AutomationCache
from packages.automation.src.dispatcher import DispatchCoordinator
from packages.automation.src.engine import AutomationEngine
from packages.automation.src.matcher import RuleMatcher
from packages.automation.src.scanner import ScannerState, ScheduledTriggerScanner, cycle_version
from packages.core.src.errors import EngineNotRunningError
from packages.core.src.types import DeliveryOutcome, EventKind, utcnow
from packages.database.src.models import Review


class TestCycleVersion:
    """Tests for the no-reply cycle version."""

    def test_truncates_to_interval(self):
        now = datetime(2026, 10, 18, 9, 14, 59)
        assert cycle_version(now, 900) == "2026-10-18T09:00:00"
        assert cycle_version(now + timedelta(seconds=1), 900) == "2026-10-18T09:15:00"


class TestScheduledTriggerScanner:
    """Tests for ScheduledTriggerScanner."""

    @pytest.mark.asyncio
    async def test_emits_only_overdue_unreplied_reviews(
        self, automation_repo, review_repo, make_automation, make_review
    ):
        now = utcnow()
        await make_automation("no_reply_24h", "tag_review")
        overdue = await make_review(created_at=now - timedelta(hours=30))
        await make_review(created_at=now - timedelta(hours=2))
        await make_review(created_at=now - timedelta(hours=30), replied_at=now - timedelta(hours=1))
        await make_review(created_at=now - timedelta(hours=30), needs_action=False)

        emitted = []

        async def emit(event):
            emitted.append(event)

        scanner = ScheduledTriggerScanner(automation_repo, review_repo, emit)
        report = await scanner.run_cycle(now)

        assert [e.review_id for e in emitted] == [overdue.id]
        assert emitted[0].kind is EventKind.NO_REPLY_ELAPSED
        assert emitted[0].version == report.version
        assert (report.tenants, report.reviews, report.emitted) == (1, 1, 1)

    @pytest.mark.asyncio
    async def test_skips_tenants_without_no_reply_automation(
        self, automation_repo, review_repo, make_automation, make_review
    ):
        now = utcnow()
        await make_automation("rating_below", "tag_review")
        await make_review(created_at=now - timedelta(hours=48))
        emitted = []

        async def emit(event):
            emitted.append(event)

        report = await ScheduledTriggerScanner(automation_repo, review_repo, emit).run_cycle(now)

        assert report.tenants == 0
        assert emitted == []

    @pytest.mark.asyncio
    async def test_repeated_cycles_fire_once(
        self,
        automation_repo,
        review_repo,
        ledger,
        make_automation,
        make_review,
        session_factory,
    ):
        """A review left unreplied across three cycles triggers one delivery."""

        automation = await make_automation("no_reply_24h", "tag_review", action_config={"tag": "overdue"})
        review = await make_review(created_at=utcnow() - timedelta(hours=25))

        async with httpx.AsyncClient() as client:
            dispatcher = DispatchCoordinator(
                build_action_registry(http_client=client, reviews=review_repo),
                ledger,
                automation_repo,
            )
            engine = AutomationEngine(
                RuleMatcher(AutomationCache(automation_repo.list_active_automations)), dispatcher
            )
            scanner = ScheduledTriggerScanner(
                automation_repo, review_repo, engine.process, interval_seconds=900
            )

            start = utcnow()
            reports = [
                await scanner.run_cycle(start + timedelta(minutes=15 * i)) for i in range(3)
            ]

        assert len({r.version for r in reports}) == 3
        assert all(r.emitted == 1 for r in reports)

        records = await ledger.list_recent(automation.id)
        assert [r.outcome for r in records] == [DeliveryOutcome.SUCCESS.value]
        async with session_factory() as session:
            stored = await session.get(Review, review.id)
            assert stored.tags == ["overdue"]

    @pytest.mark.asyncio
    async def test_skips_cycle_during_shutdown(self, automation_repo, review_repo):
        async def emit(event):
            raise AssertionError("nothing should be emitted")

        scanner = ScheduledTriggerScanner(
            automation_repo, review_repo, emit, is_stopping=lambda: True
        )

        report = await scanner.run_cycle()

        assert report.skipped is True

    @pytest.mark.asyncio
    async def test_stops_emitting_when_engine_stops(
        self, automation_repo, review_repo, make_automation, make_review
    ):
        now = utcnow()
        await make_automation("no_reply_24h", "tag_review")
        for _ in range(3):
            await make_review(created_at=now - timedelta(hours=30))
        calls = []

        async def emit(event):
            calls.append(event)
            if len(calls) == 2:
                raise EngineNotRunningError()

        scanner = ScheduledTriggerScanner(automation_repo, review_repo, emit)
        report = await scanner.run_cycle(now)

        assert report.reviews == 3
        assert report.emitted == 1
        assert scanner.state is ScannerState.IDLE
