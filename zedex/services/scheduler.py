"""
Background task that keeps the extension index fresh in proxy mode.
"""
from __future__ import annotations

import asyncio
import logging

from zedex.services.resolver import MirrorResolver

logger = logging.getLogger(__name__)


async def index_refresh_loop(resolver: MirrorResolver, interval_seconds: int) -> None:
    """
    Refresh the index every ``interval_seconds``. A failed refresh is logged
    and the previous index keeps being served until the next attempt.
    """
    logger.info(f"Index refresh scheduled every {interval_seconds}s")
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            index = await resolver.refresh_index()
            logger.info(f"Periodic index refresh done: {len(index.ids())} extensions")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Periodic index refresh failed: {e}", exc_info=True)
