from datetime import datetime, timezone

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Index,
    Integer,
    String,
    Time,
    text,
)

from .db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True)
    booking_id = Column(String, unique=True, nullable=False, index=True)

    client_id = Column(String, nullable=False, index=True)
    provider_id = Column(String, nullable=False, index=True)

    date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    duration = Column(Integer, nullable=False)  # minutes

    method = Column(String, nullable=False)  # video/voice/chat
    topic = Column(String, nullable=True)
    notes = Column(String(1000), nullable=True)

    fee = Column(Integer, nullable=False)
    payment_status = Column(String, nullable=False, default="pending")  # pending/paid/failed/refunded
    payment_id = Column(String, nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    status = Column(String, nullable=False, index=True)

    cancelled_by = Column(String, nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(String(500), nullable=True)

    session_id = Column(String, unique=True, nullable=True)
    session_started_at = Column(DateTime(timezone=True), nullable=True)
    session_ended_at = Column(DateTime(timezone=True), nullable=True)
    actual_duration = Column(Integer, nullable=True)

    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_bookings_start_before_end"),
        CheckConstraint("duration BETWEEN 30 AND 120", name="ck_bookings_duration_bounds"),
        CheckConstraint("fee >= 0", name="ck_bookings_fee_non_negative"),
        Index("ix_bookings_provider_day_status", "provider_id", "date", "status"),
        # second line of defense behind the provider-day lock
        Index(
            "uq_bookings_provider_active_start",
            "provider_id",
            "date",
            "start_time",
            unique=True,
            postgresql_where=text("status IN ('pending', 'confirmed', 'in-progress')"),
            sqlite_where=text("status IN ('pending', 'confirmed', 'in-progress')"),
        ),
    )

    def __repr__(self) -> str:
        return f"<Booking(booking_id={self.booking_id}, provider={self.provider_id}, status={self.status}, v={self.version})>"
