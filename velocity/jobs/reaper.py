"""
Job reaper: periodically evicts jobs older than the store's retention window.
Started by the application lifespan and cancelled on shutdown.
"""

import asyncio
import logging

from velocity.repositories.base import AbstractJobStore

logger = logging.getLogger(__name__)


async def sweep_once(store: AbstractJobStore) -> int:
    try:
        return store.purge_expired()
    except Exception:
        logger.exception("[reaper] sweep failed")
        return 0


async def run_job_reaper(store: AbstractJobStore, interval_seconds: float) -> None:
    logger.info("[reaper] started | interval=%ss", interval_seconds)
    while True:
        await asyncio.sleep(interval_seconds)
        removed = await sweep_once(store)
        logger.debug("[reaper] sweep complete | removed=%d", removed)
