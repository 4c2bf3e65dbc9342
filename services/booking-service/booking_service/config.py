import os

DATABASE_URL = os.getenv("BOOKING_DB")

if not DATABASE_URL:
    raise RuntimeError("BOOKING_DB environment variable is not set")

DB_ECHO = (os.getenv("BOOKING_DB_ECHO") or "false").lower() == "true"

PROVIDER_SERVICE_URL = os.getenv("PROVIDER_SERVICE_URL") or "http://provider-service:8000"
PAYMENT_SERVICE_URL = os.getenv("PAYMENT_SERVICE_URL") or "http://payment-service:8000"
HTTP_TIMEOUT = float(os.getenv("BOOKING_HTTP_TIMEOUT") or "3.0")

# wall-clock zone in which booking dates/times are expressed
BOOKING_TIMEZONE = os.getenv("BOOKING_TIMEZONE") or "UTC"

CANCELLATION_WINDOW_HOURS = int(os.getenv("CANCELLATION_WINDOW_HOURS") or "24")

# "local" (per-process asyncio locks) or "redis" (local + Redis lock per provider-day)
LOCK_BACKEND = (os.getenv("LOCK_BACKEND") or "local").lower()
LOCK_TIMEOUT_SECONDS = float(os.getenv("LOCK_TIMEOUT_SECONDS") or "10")
LOCK_WAIT_SECONDS = float(os.getenv("LOCK_WAIT_SECONDS") or "5")
