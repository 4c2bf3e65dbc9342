from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import httpx

from shared.errors import TransientError

from .config import HTTP_TIMEOUT, PROVIDER_SERVICE_URL


@dataclass(frozen=True)
class Provider:
    provider_id: str
    fee: int
    methods: frozenset[str] = field(default_factory=frozenset)
    status: str = "pending"
    is_active: bool = False

    @property
    def is_bookable(self) -> bool:
        return self.status == "approved" and self.is_active

    def supports(self, method: str) -> bool:
        return method in self.methods


class ProviderDirectory(ABC):
    @abstractmethod
    async def get_provider(self, provider_id: str) -> Provider | None:
        """Return the provider profile, or None when it does not exist."""
        raise NotImplementedError


class HttpProviderDirectory(ProviderDirectory):
    def __init__(self, base_url: str = PROVIDER_SERVICE_URL, timeout: float = HTTP_TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def get_provider(self, provider_id: str) -> Provider | None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                r = await client.get(f"{self.base_url}/providers/{provider_id}")
        except httpx.HTTPError as e:
            raise TransientError("Provider directory unavailable") from e

        if r.status_code == 404:
            return None
        if r.status_code != 200:
            raise TransientError(f"Provider directory answered {r.status_code}")

        data = r.json()
        return Provider(
            provider_id=str(data.get("provider_id") or provider_id),
            fee=int(data.get("fee") or 0),
            methods=frozenset(data.get("methods") or []),
            status=data.get("status") or "pending",
            is_active=bool(data.get("is_active")),
        )
