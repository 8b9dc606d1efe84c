"""Per-tenant automation cache.

In-memory LRU with TTL, keyed by tenant id. Workers only read from it; entries
are refreshed on demand from the loader once they expire, and dropped by
invalidate() when the dashboard edits a tenant's automations.
"""

from __future__ import annotations

import asyncio
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from uuid import UUID

import structlog

from packages.core.src.types import AutomationRule

logger = structlog.get_logger()

Loader = Callable[[UUID], Awaitable[list[AutomationRule]]]


class AutomationCache:
    """TTL cache of each tenant's active automations (async-safe)."""

    def __init__(
        self,
        loader: Loader,
        ttl_seconds: float = 30,
        max_size: int = 10000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._loader = loader
        self._ttl = ttl_seconds
        self._max_size = max_size
        self._clock = clock
        self._entries: OrderedDict[UUID, tuple[tuple[AutomationRule, ...], float]] = OrderedDict()
        self._lock = asyncio.Lock()
        # One in-flight load per tenant, dropped once nobody waits on it
        self._load_locks: dict[UUID, asyncio.Lock] = {}
        self._load_refs: dict[UUID, int] = {}
        self._generations: dict[UUID, int] = {}
        self._epoch = 0
        self.hits = 0
        self.misses = 0

    def _lookup_unsafe(self, tenant_id: UUID) -> tuple[AutomationRule, ...] | None:
        """Fresh entry or None (must be called with lock held)."""
        entry = self._entries.get(tenant_id)
        if entry is None:
            return None

        rules, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[tenant_id]
            return None

        self._entries.move_to_end(tenant_id)
        return rules

    async def get(self, tenant_id: UUID) -> tuple[AutomationRule, ...]:
        """Active automations for a tenant, loading them if stale.

        Raises:
            RepositoryError: Loader failed; nothing is cached
        """
        async with self._lock:
            rules = self._lookup_unsafe(tenant_id)
            if rules is not None:
                self.hits += 1
                return rules
            load_lock = self._load_locks.setdefault(tenant_id, asyncio.Lock())
            self._load_refs[tenant_id] = self._load_refs.get(tenant_id, 0) + 1

        try:
            async with load_lock:
                async with self._lock:
                    rules = self._lookup_unsafe(tenant_id)
                    if rules is not None:
                        self.hits += 1
                        return rules
                    generation = (self._epoch, self._generations.get(tenant_id, 0))

                self.misses += 1
                rules = tuple(await self._loader(tenant_id))

                async with self._lock:
                    # Skip storing a list that was invalidated mid-load
                    if (self._epoch, self._generations.get(tenant_id, 0)) == generation:
                        while len(self._entries) >= self._max_size:
                            self._entries.popitem(last=False)
                        self._entries[tenant_id] = (rules, self._clock() + self._ttl)
        finally:
            self._load_refs[tenant_id] -= 1
            if self._load_refs[tenant_id] == 0:
                del self._load_refs[tenant_id]
                del self._load_locks[tenant_id]
                self._generations.pop(tenant_id, None)

        logger.debug("automation_cache_loaded", tenant_id=str(tenant_id), count=len(rules))
        return rules

    async def invalidate(self, tenant_id: UUID | None = None) -> None:
        """Drop one tenant's entry, or everything."""
        async with self._lock:
            if tenant_id is None:
                self._entries.clear()
                self._epoch += 1
                return
            self._entries.pop(tenant_id, None)
            # Generations only matter to a load in flight
            if tenant_id in self._load_locks:
                self._generations[tenant_id] = self._generations.get(tenant_id, 0) + 1

    @property
    def pending_loads(self) -> int:
        """Tenants with a load in flight or queued."""
        return len(self._load_locks)

    def __len__(self) -> int:
        return len(self._entries)
