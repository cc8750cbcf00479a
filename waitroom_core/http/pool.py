"""
HTTP Client Pool
================
A timed pool of httpx.AsyncClient objects shared by every API client in the
process.

Pooled clients are shared across concurrent callers, so they are created bare:
API keys, timeouts and other per-call state are passed on each request and
never set on the client.

An AsyncClient's connections belong to the event loop that opened them, so
each entry is bound to its loop and only handed out on that loop. Entries
whose loop has closed are discarded.
"""

import asyncio
import threading
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable, List, Optional, Tuple
import httpx
import structlog

logger = structlog.get_logger(__name__)

DEFAULT_CLIENT_LIFETIME_SECONDS = 300.0


@dataclass
class _PoolEntry:
    client: httpx.AsyncClient
    created_at: float
    loop: asyncio.AbstractEventLoop


class ClientPool:
    """
    Thread-safe pool of reusable HTTP clients.

    Entries older than ``lifetime`` seconds are closed instead of being handed
    out again, which bounds how long a client (and its connections) lives.
    """

    def __init__(
        self,
        lifetime: float = DEFAULT_CLIENT_LIFETIME_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        time_func: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            lifetime: Seconds a client may live before it is recycled
            transport: Optional transport for every created client
            time_func: Monotonic clock, overridable for tests
        """
        self.lifetime = lifetime
        self._transport = transport
        self._time = time_func
        self._idle: List[_PoolEntry] = []
        self._lock = threading.Lock()
        self.created_count = 0

    def _create(self, loop: asyncio.AbstractEventLoop) -> _PoolEntry:
        client = httpx.AsyncClient(
            transport=self._transport,
            headers={"Accept": "application/json"},
        )
        with self._lock:
            self.created_count += 1
        return _PoolEntry(client=client, created_at=self._time(), loop=loop)

    def _expired(self, entry: _PoolEntry) -> bool:
        return self._time() - entry.created_at >= self.lifetime

    def _take(
        self, loop: asyncio.AbstractEventLoop
    ) -> Tuple[Optional[_PoolEntry], List[_PoolEntry]]:
        found: Optional[_PoolEntry] = None
        stale: List[_PoolEntry] = []
        abandoned = 0
        with self._lock:
            remaining: List[_PoolEntry] = []
            # Newest first, so recently used clients are reused
            for entry in reversed(self._idle):
                if entry.loop.is_closed():
                    abandoned += 1
                elif found is None and entry.loop is loop:
                    if self._expired(entry):
                        stale.append(entry)
                    else:
                        found = entry
                else:
                    remaining.append(entry)
            remaining.reverse()
            self._idle = remaining
        if abandoned:
            logger.debug("http_clients_abandoned", count=abandoned)
        return found, stale

    async def _close(self, entries: List[_PoolEntry]) -> None:
        for entry in entries:
            await entry.client.aclose()
        if entries:
            logger.debug("http_clients_recycled", count=len(entries))

    @asynccontextmanager
    async def borrow(self) -> AsyncIterator[httpx.AsyncClient]:
        """Borrow a client for the duration of one request."""
        loop = asyncio.get_running_loop()
        entry, stale = self._take(loop)
        await self._close(stale)
        if entry is None:
            entry = self._create(loop)

        try:
            yield entry.client
        finally:
            if self._expired(entry):
                await self._close([entry])
            else:
                with self._lock:
                    self._idle.append(entry)

    @property
    def idle_count(self) -> int:
        with self._lock:
            return len(self._idle)

    async def aclose(self) -> None:
        """Close the idle clients of the running loop and drop those of closed loops."""
        loop = asyncio.get_running_loop()
        with self._lock:
            mine = [e for e in self._idle if e.loop is loop]
            self._idle = [
                e for e in self._idle if e.loop is not loop and not e.loop.is_closed()
            ]
        await self._close(mine)


# Process-wide pool
_client_pool: Optional[ClientPool] = None
_pool_lock = threading.Lock()


def get_client_pool() -> ClientPool:
    """Get or create the process-wide client pool."""
    global _client_pool
    if _client_pool is None:
        with _pool_lock:
            if _client_pool is None:
                _client_pool = ClientPool()
    return _client_pool
