from datetime import time
from typing import Iterable

ACTIVE_STATUSES = ("pending", "confirmed", "in-progress")


def overlaps(a_start: time, a_end: time, b_start: time, b_end: time) -> bool:
    # half-open intervals: touching ends are not an overlap
    return a_start < b_end and b_start < a_end


def find_conflict(start: time, end: time, existing: Iterable, exclude_booking_id: str | None = None):
    """
    Return the first booking in `existing` whose slot overlaps [start, end), or None.

    `existing` is expected to hold a single provider's bookings for a single date.
    Bookings in terminal statuses are ignored even if the caller passes them in.
    """
    for booking in existing:
        if exclude_booking_id and booking.booking_id == exclude_booking_id:
            continue
        if booking.status not in ACTIVE_STATUSES:
            continue
        if overlaps(start, end, booking.start_time, booking.end_time):
            return booking
    return None


def has_conflict(start: time, end: time, existing: Iterable) -> bool:
    return find_conflict(start, end, existing) is not None
