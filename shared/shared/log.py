import logging

from .config import LOG_LEVEL

CONTEXT_KEYS = (
    "request_id",
    "booking_id",
    "session_id",
    "participant_id",
    "actor_id",
    "event_type",
    "from_status",
    "to_status",
    "reason",
    "error",
)


class ContextFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        extras = []
        for key in CONTEXT_KEYS:
            value = getattr(record, key, None)
            if value not in (None, ""):
                extras.append(f"{key}={value}")
        base = super().format(record)
        if extras:
            return f"{base} | " + " ".join(extras)
        return base


def configure_logging(service_name: str, level: str = LOG_LEVEL) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(ContextFormatter(f"%(levelname)s:{service_name}:%(name)s:%(message)s"))

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    root.addHandler(handler)
