"""
Resolution strategies for cache misses.

The mode is chosen once at startup and handed to the resolver; the resolver
never branches on a mode flag itself.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Hashable, Optional

from zedex.core.errors import NotFound
from zedex.services.single_flight import SingleFlight

logger = logging.getLogger(__name__)


class ResolutionMode(ABC):
    name: str = ""

    @property
    @abstractmethod
    def serves_misses(self) -> bool:
        """Whether a miss can still be answered (by fetching it)."""
        pass

    @abstractmethod
    async def on_miss(self, key: Hashable, fetch: Callable[[], Awaitable[Any]], reason: str) -> Any:
        """Called when ``key`` is not in the store."""
        pass


class LocalMode(ResolutionMode):
    """Serve only what is cached. Misses are final and never touch the network."""

    name = "local"

    @property
    def serves_misses(self) -> bool:
        return False

    async def on_miss(self, key: Hashable, fetch: Callable[[], Awaitable[Any]], reason: str) -> Any:
        logger.debug(f"Local mode miss for {key!r}: {reason}")
        raise NotFound(reason)


class ProxyMode(ResolutionMode):
    """Fetch misses from upstream, collapsing concurrent misses per key."""

    name = "proxy"

    def __init__(self, flights: Optional[SingleFlight] = None):
        self.flights = flights or SingleFlight()

    @property
    def serves_misses(self) -> bool:
        return True

    async def on_miss(self, key: Hashable, fetch: Callable[[], Awaitable[Any]], reason: str) -> Any:
        logger.info(f"Cache miss for {key!r}, fetching from upstream")
        return await self.flights.run(key, fetch)


def build_mode(name: str, fetch_timeout: Optional[float] = None) -> ResolutionMode:
    if name == "local":
        return LocalMode()
    if name == "proxy":
        return ProxyMode(SingleFlight(timeout=fetch_timeout))
    raise ValueError(f"Unknown mirror mode: {name!r}")
