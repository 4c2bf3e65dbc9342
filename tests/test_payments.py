import httpx
import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.errors import PaymentError, TransientError

from booking_service.payments import HttpPaymentGateway
from booking_service.scheduler import SchedulerService

from conftest import FEE


def gateway(handler) -> HttpPaymentGateway:
    return HttpPaymentGateway(base_url="http://payments", transport=httpx.MockTransport(handler))


def plain_ok_refunds(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/payments/charges":
        return httpx.Response(201, json={"payment_id": "pay-77"})
    return httpx.Response(200, text="OK")


@pytest.fixture
def http_scheduler(booking_sessions, providers, dispatcher, clock):
    def build(handler):
        return SchedulerService(
            booking_sessions,
            providers=providers,
            payments=gateway(handler),
            dispatcher=dispatcher,
            tz="UTC",
            clock=clock,
        )

    return build


async def test_refund_with_plain_text_reply_counts_as_refunded(http_scheduler, client_actor):
    scheduler = http_scheduler(plain_ok_refunds)
    booking = await scheduler.create_booking(client_actor.sub, "provider-1", "2026-03-03", "14:00", "15:00", "video")
    assert booking.payment_id == "pay-77"

    cancelled = await scheduler.cancel_booking(booking.booking_id, client_actor)

    assert cancelled.status == "cancelled"
    assert cancelled.payment_status == "refunded"


async def test_refund_blowing_up_does_not_undo_cancellation(http_scheduler, client_actor):
    def handler(request):
        if request.url.path == "/payments/charges":
            return httpx.Response(201, json={"payment_id": "pay-1"})
        raise httpx.ConnectError("connection reset", request=request)

    scheduler = http_scheduler(handler)
    booking = await scheduler.create_booking(client_actor.sub, "provider-1", "2026-03-03", "14:00", "15:00", "video")

    cancelled = await scheduler.cancel_booking(booking.booking_id, client_actor)

    assert cancelled.status == "cancelled"
    assert cancelled.payment_status == "paid"
    stored = await scheduler.get_booking(booking.booking_id, client_actor)
    assert stored.status == "cancelled"


async def test_unexpected_refund_error_is_contained(scheduler, book, client_actor, payments):
    async def broken_refund(booking_id, amount):
        raise RuntimeError("payment client bug")

    booking = await book()
    payments.refund = broken_refund

    cancelled = await scheduler.cancel_booking(booking.booking_id, client_actor)
    assert cancelled.status == "cancelled"
    assert cancelled.payment_status == "paid"


async def test_unreadable_charge_receipt_is_a_payment_error():
    payments = gateway(lambda request: httpx.Response(200, text="OK"))
    with pytest.raises(PaymentError):
        await payments.charge_fee("b-1", FEE)


async def test_gateway_error_mapping():
    declined = gateway(lambda request: httpx.Response(402, text="card declined"))
    with pytest.raises(PaymentError):
        await declined.charge_fee("b-1", FEE)

    down = gateway(lambda request: httpx.Response(503))
    with pytest.raises(TransientError):
        await down.refund("b-1", FEE)


async def test_refund_request_carries_idempotency_key():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(204)

    await gateway(handler).refund("b-9", FEE)
    assert seen[0].headers["Idempotency-Key"] == "/payments/refunds:b-9"


async def test_failed_commit_after_charge_refunds_the_client(book, scheduler, payments, dispatcher, monkeypatch):
    async def failing_commit(self):
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(AsyncSession, "commit", failing_commit)

    with pytest.raises(OperationalError):
        await book()

    assert len(payments.charges) == 1
    assert payments.refunds == payments.charges
    assert dispatcher.events == []


async def test_failed_commit_with_failing_compensation_still_raises(book, payments, monkeypatch):
    async def failing_commit(self):
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(AsyncSession, "commit", failing_commit)
    payments.fail_refund = True

    with pytest.raises(OperationalError):
        await book()
    assert payments.refunds == []
