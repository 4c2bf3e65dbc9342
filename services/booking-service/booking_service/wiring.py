import logging
from datetime import timedelta

from shared.redis import redis_client

from .config import (
    BOOKING_TIMEZONE,
    CANCELLATION_WINDOW_HOURS,
    LOCK_BACKEND,
    LOCK_TIMEOUT_SECONDS,
    LOCK_WAIT_SECONDS,
)
from .db import SessionLocal
from .locks import KeyedLock, RedisKeyedLock
from .payments import HttpPaymentGateway
from .providers import HttpProviderDirectory
from .publisher import dispatcher
from .scheduler import SchedulerService

logger = logging.getLogger(__name__)


def build_locks():
    if LOCK_BACKEND == "redis":
        if redis_client is None:
            logger.warning("LOCK_BACKEND=redis but REDIS_URL is not set; using in-process locks")
            return KeyedLock()
        return RedisKeyedLock(redis_client, timeout=LOCK_TIMEOUT_SECONDS, blocking_timeout=LOCK_WAIT_SECONDS)
    return KeyedLock()


scheduler = SchedulerService(
    SessionLocal,
    providers=HttpProviderDirectory(),
    payments=HttpPaymentGateway(),
    dispatcher=dispatcher,
    locks=build_locks(),
    tz=BOOKING_TIMEZONE,
    cancellation_window=timedelta(hours=CANCELLATION_WINDOW_HOURS),
)


def get_scheduler() -> SchedulerService:
    return scheduler
