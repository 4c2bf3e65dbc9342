import os

RABBIT_URL = os.getenv("RABBIT_URL")  # optional in dev, required if you want events
REDIS_URL = os.getenv("REDIS_URL")  # optional; enables idempotency + distributed locks

EXCHANGE_NAME = os.getenv("EXCHANGE_NAME") or "domain_events"

JWT_SECRET = os.getenv("JWT_SECRET")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM") or "HS256"

LOG_LEVEL = os.getenv("LOG_LEVEL") or "INFO"
