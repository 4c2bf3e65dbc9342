import os

DATABASE_URL = os.getenv("SESSION_DB")

if not DATABASE_URL:
    raise RuntimeError("SESSION_DB environment variable is not set")

DB_ECHO = (os.getenv("SESSION_DB_ECHO") or "false").lower() == "true"

BOOKING_SERVICE_URL = os.getenv("BOOKING_SERVICE_URL") or "http://booking-service:8000"
HTTP_TIMEOUT = float(os.getenv("SESSION_HTTP_TIMEOUT") or "2.0")

ROOM_IDLE_TIMEOUT_SECONDS = float(os.getenv("ROOM_IDLE_TIMEOUT_SECONDS") or str(2 * 60 * 60))
REAPER_INTERVAL_SECONDS = float(os.getenv("REAPER_INTERVAL_SECONDS") or "60")
