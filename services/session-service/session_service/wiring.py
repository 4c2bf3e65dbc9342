from .access import HttpBookingSessions, SessionAccess
from .chat_store import SqlChatStore
from .config import ROOM_IDLE_TIMEOUT_SECONDS
from .db import SessionLocal
from .registry import SessionRegistry
from .relay import SignalingRelay

registry = SessionRegistry(idle_timeout=ROOM_IDLE_TIMEOUT_SECONDS)
relay = SignalingRelay(registry, SqlChatStore(SessionLocal))
access = SessionAccess(registry, HttpBookingSessions())


def get_registry() -> SessionRegistry:
    return registry


def get_relay() -> SignalingRelay:
    return relay


def get_access() -> SessionAccess:
    return access
