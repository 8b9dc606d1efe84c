"""Unit tests for the event ingestion adapter."""

from __future__ import annotations

import asyncio
from uuid import uuid4

import pytest

from packages.automation.src.engine import AutomationEngine, running
from packages.automation.src.ingestion import (
    CREATED_VERSION,
    EventIngestionAdapter,
    build_event,
    normalize_kind,
)
from packages.core.src.errors import EngineNotRunningError, InvalidEventError, RepositoryError
from packages.core.src.types import EventKind, MatchSet, ReviewSnapshot


class FlakyMatcher:
    """Fails the first N loads, then matches nothing."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.attempts = 0
        self.processed = asyncio.Event()

    async def match(self, event):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise RepositoryError("list_active_automations")
        self.processed.set()
        return MatchSet(event=event)


class NullDispatcher:
    async def dispatch(self, match_set):
        return []


class TestNormalizeKind:
    """Tests for event kind normalization."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("created", EventKind.CREATED),
            ("updated", EventKind.UPDATED),
            ("replied", EventKind.UPDATED),
            ("sentiment-enriched", EventKind.UPDATED),
            ("Sentiment_Enriched", EventKind.UPDATED),
        ],
    )
    def test_sync_kinds(self, raw, expected):
        assert normalize_kind(raw) is expected

    @pytest.mark.parametrize("raw", ["deleted", "no_reply_elapsed", ""])
    def test_unsupported_kinds(self, raw):
        with pytest.raises(InvalidEventError):
            normalize_kind(raw)


class TestBuildEvent:
    """Tests for building events from raw payloads."""

    def test_created_has_constant_version(self):
        event = build_event(uuid4(), uuid4(), "created", {"rating": 4})
        assert event.version == CREATED_VERSION

    def test_update_versioned_by_content(self):
        tenant, review = uuid4(), uuid4()
        first = build_event(tenant, review, "updated", {"rating": 2, "body": "meh"})
        resent = build_event(tenant, review, "updated", {"rating": 2, "body": "meh"})
        edited = build_event(tenant, review, "updated", {"rating": 1, "body": "meh"})

        assert first.version == resent.version
        assert first.version != edited.version
        assert first.event_id != resent.event_id

    def test_explicit_version_kept(self):
        event = build_event(uuid4(), uuid4(), "replied", ReviewSnapshot(rating=3), version="sync-42")
        assert event.kind is EventKind.UPDATED
        assert event.version == "sync-42"

    def test_malformed_snapshot(self):
        with pytest.raises(InvalidEventError):
            build_event(uuid4(), uuid4(), "created", {"rating": 9})


class TestEventIngestionAdapter:
    """Tests for EventIngestionAdapter."""

    @pytest.mark.asyncio
    async def test_publish_requires_running_engine(self):
        adapter = EventIngestionAdapter(AutomationEngine(FlakyMatcher(), NullDispatcher()))

        with pytest.raises(EngineNotRunningError):
            await adapter.publish_event(uuid4(), uuid4(), "created", {"rating": 5})

    @pytest.mark.asyncio
    async def test_publish_enqueues_event(self):
        matcher = FlakyMatcher()
        engine = AutomationEngine(matcher, NullDispatcher())
        adapter = EventIngestionAdapter(engine)

        async with running(engine):
            event = await adapter.publish_event(uuid4(), uuid4(), "created", {"rating": 5})
            await engine.join()

        assert event.kind is EventKind.CREATED
        assert engine.stats.processed == 1

    @pytest.mark.asyncio
    async def test_failed_event_redelivered(self):
        matcher = FlakyMatcher(failures=2)
        engine = AutomationEngine(matcher, NullDispatcher())
        adapter = EventIngestionAdapter(engine, max_attempts=5, backoff_seconds=0.01)

        async with running(engine):
            await adapter.publish_event(uuid4(), uuid4(), "created", {"rating": 1})
            await asyncio.wait_for(matcher.processed.wait(), timeout=2)
            await adapter.close()

        assert matcher.attempts == 3
        assert engine.stats.failed == 2
        assert engine.stats.processed == 1

    @pytest.mark.asyncio
    async def test_redelivery_gives_up_after_max_attempts(self):
        matcher = FlakyMatcher(failures=10)
        engine = AutomationEngine(matcher, NullDispatcher())
        adapter = EventIngestionAdapter(engine, max_attempts=2, backoff_seconds=0.01)

        async with running(engine):
            await adapter.publish_event(uuid4(), uuid4(), "created", {"rating": 1})
            for _ in range(50):
                await asyncio.sleep(0.01)
                if matcher.attempts >= 2 and adapter.pending_redeliveries == 0:
                    break
            await engine.join()

        assert matcher.attempts == 2
        assert adapter.pending_redeliveries == 0

    @pytest.mark.asyncio
    async def test_close_cancels_pending_redeliveries(self, event_factory):
        engine = AutomationEngine(FlakyMatcher(), NullDispatcher())
        adapter = EventIngestionAdapter(engine, backoff_seconds=60)

        await adapter.handle_processing_failure(event_factory(), 1, RepositoryError("x"))
        assert adapter.pending_redeliveries == 1

        await adapter.close()
        assert adapter.pending_redeliveries == 0

    @pytest.mark.asyncio
    async def test_publish_review_from_row(self, test_review):
        matcher = FlakyMatcher()
        engine = AutomationEngine(matcher, NullDispatcher())
        adapter = EventIngestionAdapter(engine)

        async with running(engine):
            event = await adapter.publish_review(test_review, "sentiment_enriched")
            await engine.join()

        assert event.review_id == test_review.id
        assert event.tenant_id == test_review.tenant_id
        assert event.snapshot.rating == test_review.rating
        assert event.kind is EventKind.UPDATED
