import logging
import re
import uuid
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError

from shared.errors import (
    AuthorizationError,
    ConflictError,
    DomainError,
    NotFoundError,
    ValidationError,
)
from shared.security import Actor

from . import state_machine
from .conflicts import find_conflict
from .locks import KeyedLock, provider_day_key
from .models import Booking
from .payments import PaymentGateway
from .providers import ProviderDirectory
from .publisher import NotificationDispatcher, transition_event_type
from .repository import BookingRepository
from .state_machine import BookingStatus, Transition

logger = logging.getLogger(__name__)

TIME_PATTERN = re.compile(r"^([0-1]?[0-9]|2[0-3]):([0-5][0-9])$")

METHODS = ("video", "voice", "chat")
TOPICS = ("depression", "anxiety", "trauma", "relationship", "family", "work", "other")

MIN_DURATION_MINUTES = 30
MAX_DURATION_MINUTES = 120
NOTES_MAX_LENGTH = 1000
REASON_MAX_LENGTH = 500
PAGE_LIMIT_MAX = 50


def parse_clock(value, field_name: str) -> time:
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    match = TIME_PATTERN.match(str(value or "").strip())
    if not match:
        raise ValidationError(f"{field_name} must be HH:MM")
    return time(int(match.group(1)), int(match.group(2)))


def parse_day(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError("date must be an ISO date (YYYY-MM-DD)")


def minutes_between(start: time, end: time) -> int:
    return (end.hour * 60 + end.minute) - (start.hour * 60 + start.minute)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SchedulerService:
    """
    Orchestrates booking creation and lifecycle transitions.

    Creation is serialized per (provider, day) through `locks`; transitions on a
    single booking rely on the version column instead, so concurrent writers
    fail fast with ConflictError rather than queueing.
    """

    def __init__(
        self,
        sessionmaker,
        providers: ProviderDirectory,
        payments: PaymentGateway,
        dispatcher: NotificationDispatcher,
        locks=None,
        tz: str = "UTC",
        cancellation_window: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = utcnow,
    ):
        self._sessionmaker = sessionmaker
        self._providers = providers
        self._payments = payments
        self._dispatcher = dispatcher
        self._locks = locks or KeyedLock()
        self._tz = ZoneInfo(tz)
        self._cancellation_window = cancellation_window
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    # ---------------- create ----------------

    async def create_booking(
        self,
        client_id: str,
        provider_id: str,
        day,
        start_time,
        end_time,
        method: str,
        topic: str | None = None,
        notes: str | None = None,
    ) -> Booking:
        day = parse_day(day)
        start = parse_clock(start_time, "start_time")
        end = parse_clock(end_time, "end_time")

        if end <= start:
            raise ValidationError("end_time must be after start_time")

        duration = minutes_between(start, end)
        if not MIN_DURATION_MINUTES <= duration <= MAX_DURATION_MINUTES:
            raise ValidationError(
                f"Session length must be between {MIN_DURATION_MINUTES} and {MAX_DURATION_MINUTES} minutes"
            )

        if method not in METHODS:
            raise ValidationError(f"method must be one of {', '.join(METHODS)}")
        if topic is not None and topic not in TOPICS:
            raise ValidationError(f"topic must be one of {', '.join(TOPICS)}")
        if notes is not None and len(notes) > NOTES_MAX_LENGTH:
            raise ValidationError(f"notes cannot exceed {NOTES_MAX_LENGTH} characters")

        now = self.now()
        local_now = now.astimezone(self._tz)
        if day < local_now.date():
            raise ValidationError("Cannot book a date in the past")
        if day == local_now.date() and start <= local_now.time():
            raise ValidationError("Cannot book a start time that has already passed")

        provider = await self._providers.get_provider(provider_id)
        if provider is None or not provider.is_bookable:
            raise NotFoundError("Provider not found", provider_id=provider_id)
        if not provider.supports(method):
            raise ValidationError(f"Provider does not offer {method} sessions")

        async with self._locks.hold(provider_day_key(provider_id, day)):
            async with self._sessionmaker() as db:
                repo = BookingRepository(db)

                existing = await repo.find_active_for_provider_day(provider_id, day)
                clash = find_conflict(start, end, existing)
                if clash is not None:
                    logger.info(
                        "Slot conflict",
                        extra={"booking_id": clash.booking_id, "reason": f"{provider_id} {day} {start}-{end}"},
                    )
                    raise ConflictError("The requested slot is already booked")

                booking = Booking(
                    booking_id=str(uuid.uuid4()),
                    client_id=client_id,
                    provider_id=provider_id,
                    date=day,
                    start_time=start,
                    end_time=end,
                    duration=duration,
                    method=method,
                    topic=topic,
                    notes=notes,
                    fee=provider.fee,
                    payment_status="pending",
                    status=BookingStatus.PENDING.value,
                    version=1,
                    created_at=now,
                    updated_at=now,
                )
                await repo.insert_verified(booking)

                # a failed charge leaves the block uncommitted, which rolls the insert back
                payment_id = await self._payments.charge_fee(booking.booking_id, booking.fee)

                booking.payment_status = "paid"
                booking.payment_id = payment_id
                booking.paid_at = now
                try:
                    await db.commit()
                except Exception:
                    # the charge went through but the booking did not; give the money back
                    await self._refund_quietly(booking.booking_id, booking.fee, "Compensating refund failed")
                    raise

        logger.info("Booking created", extra={"booking_id": booking.booking_id, "actor_id": client_id})
        self._emit("booking.created", booking, None, booking.status, client_id, now)
        return booking

    # ---------------- transitions ----------------

    async def _transition(self, booking_id: str, actor: Actor, action: str, build) -> tuple[Booking, Transition]:
        async with self._sessionmaker() as db:
            repo = BookingRepository(db)
            booking = await repo.get_or_404(booking_id)
            state_machine.authorize(action, booking, actor)
            transition = build(booking)
            updated = await repo.apply_versioned(booking, transition.changes)

        logger.info(
            "Booking transition",
            extra={
                "booking_id": booking_id,
                "actor_id": actor.sub,
                "from_status": transition.from_status,
                "to_status": transition.to_status,
            },
        )
        self._emit(
            transition_event_type(transition.to_status),
            updated,
            transition.from_status,
            transition.to_status,
            actor.sub,
            self.now(),
        )
        return updated, transition

    async def confirm_booking(self, booking_id: str, actor: Actor) -> Booking:
        booking, _ = await self._transition(booking_id, actor, "confirm", state_machine.confirm)
        return booking

    async def cancel_booking(self, booking_id: str, actor: Actor, reason: str | None = None) -> Booking:
        if reason is not None and len(reason) > REASON_MAX_LENGTH:
            raise ValidationError(f"reason cannot exceed {REASON_MAX_LENGTH} characters")

        now = self.now()
        booking, _ = await self._transition(
            booking_id,
            actor,
            "cancel",
            lambda b: state_machine.cancel(
                b, actor, now, self._tz, window=self._cancellation_window, reason=reason
            ),
        )

        if booking.payment_status == "paid":
            await self._refund(booking)
        return booking

    async def _refund_quietly(self, booking_id: str, amount: int, message: str) -> bool:
        try:
            await self._payments.refund(booking_id, amount)
        except DomainError as e:
            logger.warning(message, extra={"booking_id": booking_id, "reason": e.code, "error": e.detail})
            return False
        except Exception as e:
            logger.exception(message, extra={"booking_id": booking_id, "error": str(e)})
            return False
        return True

    async def _refund(self, booking: Booking) -> None:
        if not await self._refund_quietly(booking.booking_id, booking.fee, "Refund failed; cancellation stands"):
            return

        try:
            async with self._sessionmaker() as db:
                await BookingRepository(db).set_payment_status(booking.booking_id, "refunded")
        except SQLAlchemyError as e:
            logger.warning(
                "Refund issued but payment status not recorded",
                extra={"booking_id": booking.booking_id, "error": str(e)},
            )
            return
        booking.payment_status = "refunded"

    async def start_session(self, booking_id: str, actor: Actor) -> Booking:
        now = self.now()
        booking, _ = await self._transition(booking_id, actor, "start", lambda b: state_machine.start(b, now))
        return booking

    async def end_session(self, booking_id: str, actor: Actor) -> Booking:
        now = self.now()
        booking, _ = await self._transition(booking_id, actor, "end", lambda b: state_machine.end(b, now))
        return booking

    async def end_session_by_session_id(self, session_id: str, actor: Actor) -> Booking:
        async with self._sessionmaker() as db:
            booking = await BookingRepository(db).get_by_session_id(session_id)
        if booking is None:
            raise NotFoundError("Session not found")
        return await self.end_session(booking.booking_id, actor)

    async def mark_no_show(self, booking_id: str, actor: Actor) -> Booking:
        booking, _ = await self._transition(booking_id, actor, "no_show", state_machine.mark_no_show)
        return booking

    # ---------------- reads ----------------

    async def get_booking(self, booking_id: str, actor: Actor) -> Booking:
        async with self._sessionmaker() as db:
            booking = await BookingRepository(db).get_or_404(booking_id)
        if not (actor.is_admin or state_machine.is_participant(booking, actor)):
            raise AuthorizationError("Not allowed to view this booking")
        return booking

    async def get_session(self, session_id: str, actor: Actor) -> Booking:
        async with self._sessionmaker() as db:
            booking = await BookingRepository(db).get_by_session_id(session_id)
        if booking is None:
            raise NotFoundError("Session not found")
        if not state_machine.is_participant(booking, actor):
            raise AuthorizationError("Not allowed to access this session")
        return booking

    async def list_bookings(
        self,
        actor: Actor,
        status: str | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[Booking], int]:
        if status is not None and status not in {s.value for s in BookingStatus}:
            raise ValidationError("Unknown status filter")
        if page < 1:
            raise ValidationError("page must be at least 1")
        if not 1 <= limit <= PAGE_LIMIT_MAX:
            raise ValidationError(f"limit must be between 1 and {PAGE_LIMIT_MAX}")

        filters = {}
        if actor.is_admin:
            pass
        elif actor.has_role("provider"):
            filters["provider_id"] = actor.sub
        elif actor.has_role("client"):
            filters["client_id"] = actor.sub
        else:
            raise AuthorizationError("Access forbidden for this role")

        async with self._sessionmaker() as db:
            return await BookingRepository(db).search(
                status=status,
                offset=(page - 1) * limit,
                limit=limit,
                **filters,
            )

    # ---------------- events ----------------

    def _emit(
        self,
        event_type: str,
        booking: Booking,
        from_status: str | None,
        to_status: str,
        actor_id: str,
        at: datetime,
    ) -> None:
        self._dispatcher.emit(
            event_type,
            {
                "bookingId": booking.booking_id,
                "fromStatus": from_status,
                "toStatus": to_status,
                "actorId": actor_id,
                "timestamp": at.isoformat(),
                "clientId": booking.client_id,
                "providerId": booking.provider_id,
                "sessionId": booking.session_id,
                "method": booking.method,
            },
        )
