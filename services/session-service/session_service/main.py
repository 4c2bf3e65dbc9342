import asyncio
import logging

from fastapi import FastAPI

from shared.config import RABBIT_URL
from shared.errors import install_error_handlers
from shared.log import configure_logging
from shared.middleware import RequestLoggingMiddleware

from .config import REAPER_INTERVAL_SECONDS
from .consumer import start_consumer_with_retry
from .reaper import reaper_loop
from .routes import router
from .wiring import registry, relay

SERVICE_NAME = "session-service"

configure_logging(SERVICE_NAME)
logger = logging.getLogger(__name__)

app = FastAPI(title="Session Service")
app.add_middleware(RequestLoggingMiddleware)
install_error_handlers(app)
app.include_router(router)

_stop_event: asyncio.Event | None = None
_consumer_task: asyncio.Task | None = None
_reaper_task: asyncio.Task | None = None


@app.get("/health")
async def health():
    return {"status": "ok", "service": SERVICE_NAME, "rooms": len(registry), "events_enabled": bool(RABBIT_URL)}


@app.on_event("startup")
async def startup():
    global _stop_event, _consumer_task, _reaper_task
    _stop_event = asyncio.Event()

    # Consumer retries in the background; the socket side works without it via on-demand lookups
    if RABBIT_URL:
        _consumer_task = asyncio.create_task(start_consumer_with_retry(_stop_event, registry))

    _reaper_task = asyncio.create_task(reaper_loop(_stop_event, registry, REAPER_INTERVAL_SECONDS))


@app.on_event("shutdown")
async def shutdown():
    global _consumer_task, _reaper_task
    if _stop_event is not None:
        _stop_event.set()

    if _reaper_task:
        await _reaper_task
        _reaper_task = None

    if _consumer_task:
        connection = await _consumer_task
        _consumer_task = None
        if connection is not None and not connection.is_closed:
            try:
                await connection.close()
            except Exception as e:
                logger.warning("Consumer connection close failed", extra={"error": str(e)})

    await relay.drain()
