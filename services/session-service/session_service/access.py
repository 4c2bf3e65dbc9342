import logging
from abc import ABC, abstractmethod

import httpx

from shared.errors import AuthorizationError, InvalidStateError, NotFoundError, TransientError
from shared.security import Actor

from .config import BOOKING_SERVICE_URL, HTTP_TIMEOUT
from .registry import SessionGrant, SessionRegistry

logger = logging.getLogger(__name__)


def grant_from_booking(data: dict) -> SessionGrant:
    roles = {}
    if data.get("client_id"):
        roles[str(data["client_id"])] = "client"
    if data.get("provider_id"):
        roles[str(data["provider_id"])] = "provider"
    return SessionGrant(
        session_id=str(data["session_id"]),
        booking_id=data.get("booking_id"),
        roles=roles,
        active=data.get("status") == "in-progress",
    )


class BookingSessions(ABC):
    @abstractmethod
    async def fetch(self, session_id: str, token: str | None) -> SessionGrant | None:
        """Look the session up on the booking side. None when it is unknown to the caller."""
        raise NotImplementedError


class HttpBookingSessions(BookingSessions):
    def __init__(self, base_url: str = BOOKING_SERVICE_URL, timeout: float = HTTP_TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def fetch(self, session_id: str, token: str | None) -> SessionGrant | None:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                r = await client.get(f"{self.base_url}/sessions/{session_id}", headers=headers)
        except httpx.HTTPError as e:
            raise TransientError("Booking service unavailable") from e

        if r.status_code in (403, 404):
            return None
        if r.status_code == 401:
            raise AuthorizationError("Booking service rejected the token")
        if r.status_code != 200:
            raise TransientError(f"Booking service answered {r.status_code}")

        data = r.json()
        data.setdefault("session_id", session_id)
        return grant_from_booking(data)


class SessionAccess:
    """Decides whether an actor may join a session, and as which role."""

    def __init__(self, registry: SessionRegistry, lookup: BookingSessions | None = None):
        self.registry = registry
        self.lookup = lookup

    async def authorize(self, session_id: str, actor: Actor) -> str:
        grant = self.registry.grant_for(session_id)
        if grant is None and self.lookup is not None:
            grant = await self.lookup.fetch(session_id, actor.token)
            if grant is not None:
                logger.info("Grant loaded from booking service", extra={"session_id": session_id})
                self.registry.grant(grant)

        if grant is None:
            raise NotFoundError("Session not found")

        role = grant.role_of(actor.sub)
        if role is None:
            raise AuthorizationError("Not a participant of this session")
        if not grant.active:
            raise InvalidStateError("Session is not in progress")
        return role
