from datetime import time
from types import SimpleNamespace

from booking_service.conflicts import ACTIVE_STATUSES, find_conflict, has_conflict, overlaps


def slot(booking_id, start, end, status="confirmed"):
    return SimpleNamespace(booking_id=booking_id, start_time=start, end_time=end, status=status)


def test_adjacent_slots_do_not_overlap():
    assert not overlaps(time(14), time(15), time(15), time(16))
    assert not overlaps(time(15), time(16), time(14), time(15))


def test_partial_and_contained_slots_overlap():
    assert overlaps(time(14), time(15), time(14, 30), time(15, 30))
    assert overlaps(time(14), time(16), time(14, 30), time(15))
    assert overlaps(time(14), time(15), time(14), time(15))


def test_find_conflict_returns_the_clashing_booking():
    existing = [slot("a", time(9), time(10)), slot("b", time(14), time(15))]
    clash = find_conflict(time(14, 30), time(15, 30), existing)
    assert clash.booking_id == "b"


def test_find_conflict_ignores_the_excluded_booking():
    existing = [slot("a", time(14), time(15))]
    assert find_conflict(time(14), time(15), existing, exclude_booking_id="a") is None


def test_no_conflict_on_empty_day():
    assert not has_conflict(time(14), time(15), [])


def test_active_statuses():
    assert set(ACTIVE_STATUSES) == {"pending", "confirmed", "in-progress"}


def test_cancelled_bookings_free_their_slot():
    existing = [slot("a", time(14), time(15), status="cancelled"), slot("b", time(14), time(15), status="no-show")]
    assert find_conflict(time(14), time(15), existing) is None
