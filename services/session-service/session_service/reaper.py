import asyncio
import logging

from .registry import SessionRegistry

logger = logging.getLogger(__name__)


async def reaper_loop(stop_event: asyncio.Event, registry: SessionRegistry, interval: float):
    while not stop_event.is_set():
        for session_id in await registry.reap_idle():
            logger.info("Reaped idle room", extra={"session_id": session_id})
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            continue
