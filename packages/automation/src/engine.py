"""Automation engine.

Owns the event queue and the worker pool. Producers (the ingestion adapter,
the scanner) submit events; workers match and dispatch them.

Ordering: events for the same review are processed in arrival order through
a per-review lock; different reviews run concurrently.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

import httpx
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from packages.core.src.config import AutomationConfig
from packages.core.src.errors import EngineNotRunningError, RepositoryError
from packages.core.src.protocols import MailSender
from packages.core.src.types import Event
from packages.database.src.repositories import (
    AutomationRepository,
    DeliveryLedger,
    ReviewRepository,
)

from .actions import build_action_registry
from .cache import AutomationCache
from .dispatcher import DispatchCoordinator
from .matcher import RuleMatcher
from .scanner import ScheduledTriggerScanner

if TYPE_CHECKING:
    from .retry import RetrySweep

logger = structlog.get_logger()

FailureHandler = Callable[[Event, int, Exception], Awaitable[None]]


class EngineState(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass
class EngineStats:
    received: int = 0
    processed: int = 0
    matched: int = 0
    failed: int = 0
    dropped: int = 0


class ReviewSequencer:
    """Per-review FIFO locks, dropped once nobody holds or waits on them."""

    def __init__(self):
        self._locks: dict[UUID, asyncio.Lock] = {}
        self._refs: dict[UUID, int] = {}

    @asynccontextmanager
    async def hold(self, review_id: UUID) -> AsyncIterator[None]:
        lock = self._locks.setdefault(review_id, asyncio.Lock())
        self._refs[review_id] = self._refs.get(review_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._refs[review_id] -= 1
            if self._refs[review_id] == 0:
                del self._refs[review_id]
                del self._locks[review_id]

    def __len__(self) -> int:
        return len(self._locks)


class AutomationEngine:
    """Event queue, worker pool, and background triggers."""

    def __init__(
        self,
        matcher: RuleMatcher,
        dispatcher: DispatchCoordinator,
        *,
        cache: AutomationCache | None = None,
        worker_count: int = 4,
        queue_max_size: int = 10000,
        shutdown_timeout: float = 30.0,
    ):
        self.matcher = matcher
        self.dispatcher = dispatcher
        self.cache = cache
        self.scanner: ScheduledTriggerScanner | None = None
        self.retry_sweep: RetrySweep | None = None
        self.sequencer = ReviewSequencer()
        self.stats = EngineStats()

        self._worker_count = worker_count
        self._queue: asyncio.Queue[tuple[Event, int]] = asyncio.Queue(maxsize=queue_max_size)
        self._shutdown_timeout = shutdown_timeout
        self._workers: dict[int, asyncio.Task] = {}
        self._idle: set[int] = set()
        self._background: list[asyncio.Task] = []
        self._failure_handler: FailureHandler | None = None
        self._owned_clients: list[httpx.AsyncClient] = []
        self._state = EngineState.CREATED

    @classmethod
    def from_config(
        cls,
        config: AutomationConfig,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        http_client: httpx.AsyncClient | None = None,
        mail_sender: MailSender | None = None,
    ) -> AutomationEngine:
        """Wire the engine against the database repositories."""
        from .retry import RetrySweep

        automations = AutomationRepository(session_factory)
        reviews = ReviewRepository(session_factory)
        ledger = DeliveryLedger(session_factory)

        owned_client = http_client is None
        if http_client is None:
            http_client = httpx.AsyncClient(timeout=config.action_timeout_seconds)

        cache = AutomationCache(
            automations.list_active_automations,
            ttl_seconds=config.automation_cache_ttl_seconds,
        )
        registry = build_action_registry(
            http_client=http_client,
            reviews=reviews,
            mail_sender=mail_sender,
            app_url=config.app_url,
            timeout=config.action_timeout_seconds,
        )
        dispatcher = DispatchCoordinator(
            registry,
            ledger,
            automations,
            tenant_concurrency=config.tenant_concurrency,
            action_timeout=config.action_timeout_seconds,
            claim_lease_seconds=config.claim_lease_seconds,
        )
        engine = cls(
            RuleMatcher(cache),
            dispatcher,
            cache=cache,
            worker_count=config.worker_count,
            queue_max_size=config.queue_max_size,
            shutdown_timeout=config.shutdown_timeout_seconds,
        )
        if owned_client:
            engine._owned_clients.append(http_client)

        if config.scanner_enabled:
            engine.scanner = ScheduledTriggerScanner(
                automations,
                reviews,
                engine.submit,
                interval_seconds=config.scan_interval_seconds,
                threshold_hours=config.no_reply_threshold_hours,
                batch_limit=config.scan_batch_limit,
                is_stopping=lambda: not engine.is_running,
            )
        if config.retry_sweep_enabled:
            engine.retry_sweep = RetrySweep(
                ledger,
                automations,
                reviews,
                dispatcher,
                window_hours=config.retry_window_hours,
                max_attempts=config.retry_max_attempts,
                interval_seconds=config.retry_interval_seconds,
                sequencer=engine.sequencer,
                is_stopping=lambda: not engine.is_running,
            )
        return engine

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is EngineState.RUNNING

    @property
    def queue_depth(self) -> int:
        return self._queue.qsize()

    def set_failure_handler(self, handler: FailureHandler | None) -> None:
        """Called when an event could not be processed (rules failed to load)."""
        self._failure_handler = handler

    def status(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "workers": len(self._workers),
            "busy_workers": len(self._workers) - len(self._idle),
            "queue_depth": self.queue_depth,
            "scanner": self.scanner.state.value if self.scanner else None,
            "stats": asdict(self.stats),
        }

    # ------------------------------------------------------------------
    # Producers
    # ------------------------------------------------------------------

    async def submit(self, event: Event, attempt: int = 1) -> None:
        """Enqueue an event, waiting for room if the queue is full.

        Raises:
            EngineNotRunningError: Engine is stopped or shutting down
        """
        if not self.is_running:
            raise EngineNotRunningError()
        await self._queue.put((event, attempt))
        self.stats.received += 1

    async def invalidate_tenant(self, tenant_id: UUID) -> None:
        """Drop a tenant's cached automations after a dashboard edit."""
        if self.cache is not None:
            await self.cache.invalidate(tenant_id)

    async def join(self) -> None:
        """Wait until every queued event has been processed."""
        await self._queue.join()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._state is EngineState.RUNNING:
            logger.warning("engine_already_running")
            return

        self._state = EngineState.RUNNING
        for index in range(self._worker_count):
            self._workers[index] = asyncio.create_task(
                self._worker(index), name=f"automation-worker-{index}"
            )
        if self.scanner is not None:
            self._background.append(asyncio.create_task(self.scanner.run(), name="no-reply-scanner"))
        if self.retry_sweep is not None:
            self._background.append(asyncio.create_task(self.retry_sweep.run(), name="retry-sweep"))

        logger.info(
            "automation_engine_started",
            workers=self._worker_count,
            scanner=self.scanner is not None,
            retry_sweep=self.retry_sweep is not None,
        )

    async def stop(self, timeout: float | None = None) -> None:
        """Graceful shutdown.

        Stops accepting events, lets in-flight events finish (up to the
        timeout), and stops the background triggers. Events still queued are
        dropped and counted.
        """
        if self._state in (EngineState.STOPPING, EngineState.STOPPED, EngineState.CREATED):
            self._state = EngineState.STOPPED
            return

        timeout = self._shutdown_timeout if timeout is None else timeout
        self._state = EngineState.STOPPING
        logger.info("automation_engine_stopping", queue_depth=self.queue_depth)

        for task in self._background:
            task.cancel()

        # Idle workers are blocked on the queue; busy ones finish their event
        for index in list(self._idle):
            self._workers[index].cancel()

        workers = list(self._workers.values())
        if workers:
            _, pending = await asyncio.wait(workers, timeout=timeout)
            for task in pending:
                task.cancel()
            if pending:
                logger.warning("automation_workers_cancelled", count=len(pending))
                await asyncio.gather(*pending, return_exceptions=True)

        await asyncio.gather(*self._background, return_exceptions=True)

        dropped = 0
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
            dropped += 1
        self.stats.dropped += dropped

        for client in self._owned_clients:
            await client.aclose()
        self._owned_clients.clear()

        self._workers.clear()
        self._idle.clear()
        self._background.clear()
        self._state = EngineState.STOPPED
        logger.info("automation_engine_stopped", dropped=dropped, stats=asdict(self.stats))

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    async def _worker(self, index: int) -> None:
        while self._state is EngineState.RUNNING:
            self._idle.add(index)
            try:
                event, attempt = await self._queue.get()
            finally:
                self._idle.discard(index)

            try:
                # No await between dequeue and taking the review lock,
                # so lock waiters line up in queue order
                async with self.sequencer.hold(event.review_id):
                    await self.process(event, attempt)
            except asyncio.CancelledError:
                raise
            except Exception:
                self.stats.failed += 1
                logger.exception(
                    "event_processing_crashed",
                    event_id=str(event.event_id),
                    review_id=str(event.review_id),
                )
            finally:
                self._queue.task_done()

    async def process(self, event: Event, attempt: int = 1) -> list[Any]:
        """Match and dispatch one event.

        A failure to load automations is reported to the failure handler so
        the event can be redelivered; it is never silently dropped.
        """
        try:
            match_set = await self.matcher.match(event)
        except RepositoryError as e:
            self.stats.failed += 1
            logger.error(
                "event_processing_failed",
                event_id=str(event.event_id),
                tenant_id=str(event.tenant_id),
                review_id=str(event.review_id),
                attempt=attempt,
                error=str(e),
            )
            if self._failure_handler is not None:
                await self._failure_handler(event, attempt, e)
            return []

        self.stats.processed += 1
        if not match_set:
            return []

        self.stats.matched += len(match_set)
        return await self.dispatcher.dispatch(match_set)


@asynccontextmanager
async def running(engine: AutomationEngine) -> AsyncIterator[AutomationEngine]:
    """Start an engine for the duration of a block."""
    await engine.start()
    try:
        yield engine
    finally:
        await engine.stop()
