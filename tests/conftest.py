import os

os.environ["JWT_SECRET"] = "test-secret"
os.environ["RABBIT_URL"] = ""
os.environ["REDIS_URL"] = ""
os.environ.setdefault("BOOKING_DB", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SESSION_DB", "sqlite+aiosqlite:///:memory:")

from datetime import date, datetime, time, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from shared.database import get_session
from shared.errors import PaymentError
from shared.security import Actor, issue_token

from booking_service.db import Base as BookingBase
from booking_service.payments import PaymentGateway
from booking_service.providers import Provider, ProviderDirectory
from booking_service.publisher import NotificationDispatcher
from booking_service.scheduler import SchedulerService


# Monday morning; bookings in the tests are for the following day
NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
TOMORROW = date(2026, 3, 3)

PROVIDER_ID = "provider-1"
CLIENT_ID = "client-1"
FEE = 80000


class FixedClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeProviders(ProviderDirectory):
    def __init__(self, *providers: Provider):
        self.providers = {p.provider_id: p for p in providers}

    async def get_provider(self, provider_id: str) -> Provider | None:
        return self.providers.get(provider_id)


class FakePayments(PaymentGateway):
    def __init__(self):
        self.charges = []
        self.refunds = []
        self.fail_charge = False
        self.fail_refund = False

    async def charge_fee(self, booking_id: str, amount: int) -> str:
        if self.fail_charge:
            raise PaymentError("Card declined")
        self.charges.append((booking_id, amount))
        return f"pay-{len(self.charges)}"

    async def refund(self, booking_id: str, amount: int) -> None:
        if self.fail_refund:
            raise PaymentError("Refund rejected")
        self.refunds.append((booking_id, amount))


class RecordingDispatcher(NotificationDispatcher):
    def __init__(self):
        self.events = []

    def emit(self, event_type: str, data: dict) -> None:
        self.events.append((event_type, data))

    def types(self) -> list[str]:
        return [t for t, _ in self.events]


def make_actor(sub: str, *roles: str) -> Actor:
    return Actor(sub=sub, roles=frozenset(roles), token=issue_token(sub, list(roles)))


def bearer(sub: str, *roles: str) -> dict:
    return {"Authorization": f"Bearer {issue_token(sub, list(roles))}"}


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def providers():
    return FakeProviders(
        Provider(
            provider_id=PROVIDER_ID,
            fee=FEE,
            methods=frozenset({"video", "voice", "chat"}),
            status="approved",
            is_active=True,
        ),
        Provider(provider_id="provider-2", fee=50000, methods=frozenset({"chat"}), status="approved", is_active=True),
        Provider(provider_id="provider-pending", fee=50000, methods=frozenset({"video"}), status="pending"),
    )


@pytest.fixture
def payments():
    return FakePayments()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
async def booking_sessions(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'bookings.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(BookingBase.metadata.create_all)
    yield get_session(engine)
    await engine.dispose()


@pytest.fixture
def scheduler(booking_sessions, providers, payments, dispatcher, clock):
    return SchedulerService(
        booking_sessions,
        providers=providers,
        payments=payments,
        dispatcher=dispatcher,
        tz="UTC",
        clock=clock,
    )


@pytest.fixture
def client_actor():
    return make_actor(CLIENT_ID, "client")


@pytest.fixture
def provider_actor():
    return make_actor(PROVIDER_ID, "provider")


@pytest.fixture
def admin_actor():
    return make_actor("admin-1", "admin")


@pytest.fixture
def book(scheduler):
    async def _book(start: str = "14:00", end: str = "15:00", **overrides):
        params = {
            "client_id": CLIENT_ID,
            "provider_id": PROVIDER_ID,
            "day": TOMORROW,
            "start_time": start,
            "end_time": end,
            "method": "video",
        }
        params.update(overrides)
        return await scheduler.create_booking(**params)

    return _book


def at(day: date, hh: int, mm: int = 0) -> datetime:
    return datetime.combine(day, time(hh, mm), tzinfo=timezone.utc)


class FakeChannel:
    """Stands in for a WebSocket on the sending side."""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail
        self.close_code = None

    async def send_json(self, frame):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(frame)

    async def close(self, code=1000, reason=""):
        self.close_code = code


def frames(connection) -> list:
    out = []
    while not connection.queue.empty():
        out.append(connection.queue.get_nowait())
    return out
