from abc import ABC, abstractmethod

import httpx

from shared.errors import PaymentError, TransientError

from .config import HTTP_TIMEOUT, PAYMENT_SERVICE_URL


class PaymentGateway(ABC):
    @abstractmethod
    async def charge_fee(self, booking_id: str, amount: int) -> str:
        """Charge the booking fee. Returns the payment id."""
        raise NotImplementedError

    @abstractmethod
    async def refund(self, booking_id: str, amount: int) -> None:
        raise NotImplementedError


class HttpPaymentGateway(PaymentGateway):
    def __init__(self, base_url: str = PAYMENT_SERVICE_URL, timeout: float = HTTP_TIMEOUT, transport=None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def _post(self, path: str, payload: dict) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(
                    f"{self.base_url}{path}",
                    json=payload,
                    headers={"Idempotency-Key": f"{path}:{payload['booking_id']}"},
                )
                resp.raise_for_status()
                return resp
        except httpx.TimeoutException as e:
            raise TransientError(f"Timeout calling payment service: {path}") from e
        except httpx.HTTPStatusError as e:
            if e.response.status_code >= 500:
                raise TransientError(f"Payment service error {e.response.status_code}") from e
            raise PaymentError(e.response.text or "Payment rejected") from e
        except httpx.HTTPError as e:
            raise TransientError(f"Payment service unreachable: {path}") from e

    async def charge_fee(self, booking_id: str, amount: int) -> str:
        resp = await self._post("/payments/charges", {"booking_id": booking_id, "amount": amount})
        try:
            data = resp.json()
        except ValueError as e:
            raise PaymentError("Payment service returned an unreadable charge receipt") from e
        payment_id = data.get("payment_id") if isinstance(data, dict) else None
        if not payment_id:
            raise PaymentError("Payment service returned no payment id")
        return str(payment_id)

    async def refund(self, booking_id: str, amount: int) -> None:
        # any 2xx is an accepted refund; the body is not part of the contract
        await self._post("/payments/refunds", {"booking_id": booking_id, "amount": amount})
