from datetime import date, datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.errors import ConflictError, NotFoundError

from .conflicts import ACTIVE_STATUSES, find_conflict
from .models import Booking


class BookingRepository:
    """Booking persistence on one AsyncSession. Callers own commit boundaries."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, booking_id: str) -> Booking | None:
        res = await self.db.execute(
            select(Booking)
            .where(Booking.booking_id == booking_id)
            .execution_options(populate_existing=True)
        )
        return res.scalar_one_or_none()

    async def get_or_404(self, booking_id: str) -> Booking:
        booking = await self.get(booking_id)
        if not booking:
            raise NotFoundError("Booking not found", booking_id=booking_id)
        return booking

    async def get_by_session_id(self, session_id: str) -> Booking | None:
        res = await self.db.execute(
            select(Booking)
            .where(Booking.session_id == session_id)
            .execution_options(populate_existing=True)
        )
        return res.scalar_one_or_none()

    async def find_active_for_provider_day(self, provider_id: str, day: date) -> list[Booking]:
        res = await self.db.execute(
            select(Booking)
            .where(
                Booking.provider_id == provider_id,
                Booking.date == day,
                Booking.status.in_(ACTIVE_STATUSES),
            )
            .order_by(Booking.start_time)
        )
        return list(res.scalars().all())

    async def insert_verified(self, booking: Booking) -> Booking:
        """
        Insert, then re-read the provider's day and make sure nothing else
        overlaps. Works without the keyed lock too (e.g. two instances racing);
        the loser is rolled back.
        """
        self.db.add(booking)
        try:
            await self.db.flush()
        except IntegrityError as e:
            await self.db.rollback()
            raise ConflictError("The requested slot is already booked") from e

        others = await self.find_active_for_provider_day(booking.provider_id, booking.date)
        if find_conflict(booking.start_time, booking.end_time, others, exclude_booking_id=booking.booking_id):
            await self.db.rollback()
            raise ConflictError("The requested slot is already booked")
        return booking

    async def apply_versioned(self, booking: Booking, changes: dict) -> Booking:
        """
        UPDATE ... WHERE version = <read version>. Zero rows means someone else
        wrote first; the caller gets a ConflictError and nothing is written.
        """
        expected = booking.version
        res = await self.db.execute(
            update(Booking)
            .where(Booking.booking_id == booking.booking_id, Booking.version == expected)
            .values(**changes, version=expected + 1, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            await self.db.rollback()
            raise ConflictError(
                "Booking was modified concurrently; reload and retry",
                booking_id=booking.booking_id,
            )

        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise ConflictError("Booking update violates a uniqueness constraint") from e

        return await self.get_or_404(booking.booking_id)

    async def set_payment_status(self, booking_id: str, payment_status: str) -> None:
        # payment bookkeeping does not take part in the lifecycle version
        await self.db.execute(
            update(Booking)
            .where(Booking.booking_id == booking_id)
            .values(payment_status=payment_status, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

    async def search(
        self,
        client_id: str | None = None,
        provider_id: str | None = None,
        status: str | None = None,
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[list[Booking], int]:
        filters = []
        if client_id:
            filters.append(Booking.client_id == client_id)
        if provider_id:
            filters.append(Booking.provider_id == provider_id)
        if status:
            filters.append(Booking.status == status)

        total = await self.db.scalar(select(func.count()).select_from(Booking).where(*filters))
        res = await self.db.execute(
            select(Booking)
            .where(*filters)
            .order_by(Booking.date.desc(), Booking.start_time.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(res.scalars().all()), int(total or 0)
