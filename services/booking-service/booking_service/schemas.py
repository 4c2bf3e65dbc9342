from datetime import date, datetime

from pydantic import BaseModel, Field


class CreateBookingRequest(BaseModel):
    provider_id: str
    date: date
    start_time: str = Field(examples=["14:00"])
    end_time: str = Field(examples=["15:00"])
    method: str = Field(examples=["video"])
    topic: str | None = None
    notes: str | None = None


class CancelBookingRequest(BaseModel):
    reason: str | None = None


class BookingResponse(BaseModel):
    booking_id: str
    status: str
    client_id: str
    provider_id: str
    date: date
    start_time: str
    end_time: str
    duration: int
    method: str
    topic: str | None = None
    notes: str | None = None
    fee: int
    payment_status: str
    session_id: str | None = None
    cancelled_by: str | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    session_started_at: datetime | None = None
    session_ended_at: datetime | None = None
    actual_duration: int | None = None
    version: int
    created_at: datetime
    updated_at: datetime


class Pagination(BaseModel):
    current: int
    pages: int
    total: int
    limit: int


class BookingListResponse(BaseModel):
    bookings: list[BookingResponse]
    pagination: Pagination


class SessionResponse(BaseModel):
    session_id: str
    booking_id: str
    client_id: str
    provider_id: str
    method: str
    status: str
    duration: int
    session_started_at: datetime | None = None
    session_ended_at: datetime | None = None
    actual_duration: int | None = None
