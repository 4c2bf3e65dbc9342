import math

from fastapi import APIRouter, Depends, Query

from shared.rbac import require_role
from shared.security import Actor, get_current_actor

from .models import Booking
from .scheduler import SchedulerService
from .schemas import (
    BookingListResponse,
    BookingResponse,
    CancelBookingRequest,
    CreateBookingRequest,
    Pagination,
    SessionResponse,
)
from .wiring import get_scheduler

router = APIRouter()


def to_response(booking: Booking) -> BookingResponse:
    return BookingResponse(
        booking_id=booking.booking_id,
        status=booking.status,
        client_id=booking.client_id,
        provider_id=booking.provider_id,
        date=booking.date,
        start_time=booking.start_time.strftime("%H:%M"),
        end_time=booking.end_time.strftime("%H:%M"),
        duration=booking.duration,
        method=booking.method,
        topic=booking.topic,
        notes=booking.notes,
        fee=booking.fee,
        payment_status=booking.payment_status,
        session_id=booking.session_id,
        cancelled_by=booking.cancelled_by,
        cancelled_at=booking.cancelled_at,
        cancellation_reason=booking.cancellation_reason,
        session_started_at=booking.session_started_at,
        session_ended_at=booking.session_ended_at,
        actual_duration=booking.actual_duration,
        version=booking.version,
        created_at=booking.created_at,
        updated_at=booking.updated_at,
    )


def to_session_response(booking: Booking) -> SessionResponse:
    return SessionResponse(
        session_id=booking.session_id,
        booking_id=booking.booking_id,
        client_id=booking.client_id,
        provider_id=booking.provider_id,
        method=booking.method,
        status=booking.status,
        duration=booking.duration,
        session_started_at=booking.session_started_at,
        session_ended_at=booking.session_ended_at,
        actual_duration=booking.actual_duration,
    )


@router.post("/bookings", response_model=BookingResponse, status_code=201)
async def create_booking(
    data: CreateBookingRequest,
    actor: Actor = Depends(get_current_actor),
    scheduler: SchedulerService = Depends(get_scheduler),
):
    require_role(actor, ["client"])
    booking = await scheduler.create_booking(
        client_id=actor.sub,
        provider_id=data.provider_id,
        day=data.date,
        start_time=data.start_time,
        end_time=data.end_time,
        method=data.method,
        topic=data.topic,
        notes=data.notes,
    )
    return to_response(booking)


@router.get("/bookings", response_model=BookingListResponse)
async def list_bookings(
    status: str | None = None,
    page: int = Query(1),
    limit: int = Query(10),
    actor: Actor = Depends(get_current_actor),
    scheduler: SchedulerService = Depends(get_scheduler),
):
    bookings, total = await scheduler.list_bookings(actor, status=status, page=page, limit=limit)
    return BookingListResponse(
        bookings=[to_response(b) for b in bookings],
        pagination=Pagination(current=page, pages=math.ceil(total / limit), total=total, limit=limit),
    )


@router.get("/bookings/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: str,
    actor: Actor = Depends(get_current_actor),
    scheduler: SchedulerService = Depends(get_scheduler),
):
    return to_response(await scheduler.get_booking(booking_id, actor))


@router.put("/bookings/{booking_id}/confirm", response_model=BookingResponse)
async def confirm_booking(
    booking_id: str,
    actor: Actor = Depends(get_current_actor),
    scheduler: SchedulerService = Depends(get_scheduler),
):
    return to_response(await scheduler.confirm_booking(booking_id, actor))


@router.put("/bookings/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: str,
    data: CancelBookingRequest | None = None,
    actor: Actor = Depends(get_current_actor),
    scheduler: SchedulerService = Depends(get_scheduler),
):
    reason = data.reason if data else None
    return to_response(await scheduler.cancel_booking(booking_id, actor, reason=reason))


@router.put("/bookings/{booking_id}/start", response_model=BookingResponse)
async def start_session(
    booking_id: str,
    actor: Actor = Depends(get_current_actor),
    scheduler: SchedulerService = Depends(get_scheduler),
):
    return to_response(await scheduler.start_session(booking_id, actor))


@router.put("/bookings/{booking_id}/end", response_model=BookingResponse)
async def end_session(
    booking_id: str,
    actor: Actor = Depends(get_current_actor),
    scheduler: SchedulerService = Depends(get_scheduler),
):
    return to_response(await scheduler.end_session(booking_id, actor))


@router.put("/bookings/{booking_id}/no-show", response_model=BookingResponse)
async def mark_no_show(
    booking_id: str,
    actor: Actor = Depends(get_current_actor),
    scheduler: SchedulerService = Depends(get_scheduler),
):
    require_role(actor, ["admin"])
    return to_response(await scheduler.mark_no_show(booking_id, actor))


@router.get("/sessions/{session_id}", response_model=SessionResponse)
async def get_session(
    session_id: str,
    actor: Actor = Depends(get_current_actor),
    scheduler: SchedulerService = Depends(get_scheduler),
):
    return to_session_response(await scheduler.get_session(session_id, actor))


@router.put("/sessions/{session_id}/end", response_model=SessionResponse)
async def end_session_by_session_id(
    session_id: str,
    actor: Actor = Depends(get_current_actor),
    scheduler: SchedulerService = Depends(get_scheduler),
):
    return to_session_response(await scheduler.end_session_by_session_id(session_id, actor))
