"""
Keyed single-flight registry.

Concurrent callers asking for the same key share one underlying operation.
The first caller launches it; later callers attach to the same task and get
the same result or the same exception. The registry entry is always removed
once the operation settles so a failed key can be retried.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional

from zedex.core.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)


class SingleFlight:
    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout
        self._lock = threading.Lock()
        self._pending: Dict[Hashable, asyncio.Future] = {}

    def in_flight(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._pending

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    async def _guarded(self, key: Hashable, factory: Callable[[], Awaitable[Any]]) -> Any:
        try:
            if self.timeout is None:
                return await factory()
            try:
                return await asyncio.wait_for(factory(), timeout=self.timeout)
            except asyncio.TimeoutError:
                logger.error(f"Fetch for {key!r} timed out after {self.timeout}s")
                raise UpstreamUnavailable(f"Timed out after {self.timeout}s fetching {key!r}")
        finally:
            with self._lock:
                self._pending.pop(key, None)

    async def run(self, key: Hashable, factory: Callable[[], Awaitable[Any]]) -> Any:
        """
        Run ``factory()`` for ``key`` unless a run for the same key is already
        pending, in which case wait for that one instead.

        Waiters are shielded: cancelling one caller does not cancel the
        shared operation for the others.
        """
        with self._lock:
            task = self._pending.get(key)
            if task is None:
                task = asyncio.ensure_future(self._guarded(key, factory))
                self._pending[key] = task
                logger.debug(f"Started fetch for {key!r}")
            else:
                logger.info(f"Joining in-flight fetch for {key!r}")
        return await asyncio.shield(task)
