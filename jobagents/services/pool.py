# =============================================================================
# Client Pool — Bounded Reuse of Collaborator Clients
# =============================================================================
#
# A free list of idle clients plus an in-use set, bounded by max_size.
#
#   acquire()  → reuse an idle client, or create one if under max_size,
#                otherwise wait until another caller releases
#   release()  → return a client to the free list (explicit, never implicit)
#   discard()  → drop a broken client and free its slot
#   prune()    → close idle clients unused for longer than the TTL
#   lease()    → async context manager around acquire/release
#
# Pruning is explicit; the pool never runs a background timer.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class _PooledClient(Generic[T]):
    client: T
    created_at: float
    last_used: float


class ClientPool(Generic[T]):
    """Bounded pool of clients built by an async factory."""

    def __init__(
        self,
        factory: Callable[[], Awaitable[T]],
        max_size: int = 4,
        ttl_seconds: float = 300.0,
        closer: Callable[[T], Awaitable[None]] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._factory = factory
        self._closer = closer
        self._clock = clock
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds

        self._idle: list[_PooledClient[T]] = []
        self._in_use: dict[int, _PooledClient[T]] = {}
        self._creating = 0
        self._cond = asyncio.Condition()

    # -- introspection ------------------------------------------------------

    @property
    def size(self) -> int:
        return len(self._idle) + len(self._in_use) + self._creating

    @property
    def idle_count(self) -> int:
        return len(self._idle)

    @property
    def in_use_count(self) -> int:
        return len(self._in_use)

    # -- acquire / release --------------------------------------------------

    async def acquire(self) -> T:
        async with self._cond:
            while True:
                if self._idle:
                    entry = self._idle.pop()
                    self._in_use[id(entry.client)] = entry
                    return entry.client
                if self.size < self.max_size:
                    self._creating += 1
                    break
                await self._cond.wait()

        try:
            client = await self._factory()
        except BaseException:
            async with self._cond:
                self._creating -= 1
                self._cond.notify()
            raise

        now = self._clock()
        async with self._cond:
            self._creating -= 1
            self._in_use[id(client)] = _PooledClient(client, now, now)
        logger.debug("Created pooled client (%d/%d)", self.size, self.max_size)
        return client

    async def release(self, client: T) -> None:
        async with self._cond:
            entry = self._in_use.pop(id(client), None)
            if entry is None:
                raise ValueError("Client was not acquired from this pool")
            entry.last_used = self._clock()
            self._idle.append(entry)
            self._cond.notify()

    async def discard(self, client: T) -> None:
        async with self._cond:
            entry = self._in_use.pop(id(client), None)
            self._cond.notify()
        if entry is not None:
            await self._close(entry.client)

    @asynccontextmanager
    async def lease(self) -> AsyncIterator[T]:
        client = await self.acquire()
        try:
            yield client
        finally:
            await self.release(client)

    # -- maintenance --------------------------------------------------------

    async def prune(self) -> int:
        """Close idle clients whose last use is older than the TTL."""
        cutoff = self._clock() - self.ttl_seconds
        async with self._cond:
            expired = [e for e in self._idle if e.last_used < cutoff]
            self._idle = [e for e in self._idle if e.last_used >= cutoff]
            if expired:
                self._cond.notify(len(expired))

        for entry in expired:
            await self._close(entry.client)
        if expired:
            logger.info("Pruned %d idle pooled client(s)", len(expired))
        return len(expired)

    async def close_all(self) -> None:
        """Close idle clients. In-use clients are closed when discarded."""
        async with self._cond:
            idle, self._idle = self._idle, []
        for entry in idle:
            await self._close(entry.client)

    async def _close(self, client: T) -> None:
        if self._closer is None:
            return
        try:
            await self._closer(client)
        except Exception:
            logger.warning("Failed to close pooled client", exc_info=True)
