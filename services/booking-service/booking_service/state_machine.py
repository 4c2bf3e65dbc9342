"""
Booking lifecycle.

    pending -> confirmed -> in-progress -> completed
    pending | confirmed -> cancelled
    confirmed -> no-show            (admin only)

Every function here is pure: guards raise, successful guards return a
`Transition` describing the field changes. Writing them (with the version
check) is the repository's job.
"""
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, tzinfo
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum

from shared.errors import AuthorizationError, InvalidStateError, PolicyViolationError
from shared.security import Actor


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no-show"


TERMINAL_STATUSES = frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.NO_SHOW})

# action -> (allowed source statuses, target status)
RULES: dict[str, tuple[frozenset, BookingStatus]] = {
    "confirm": (frozenset({BookingStatus.PENDING}), BookingStatus.CONFIRMED),
    "cancel": (frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED}), BookingStatus.CANCELLED),
    "start": (frozenset({BookingStatus.CONFIRMED}), BookingStatus.IN_PROGRESS),
    "end": (frozenset({BookingStatus.IN_PROGRESS}), BookingStatus.COMPLETED),
    "no_show": (frozenset({BookingStatus.CONFIRMED}), BookingStatus.NO_SHOW),
}

SESSION_ID_BYTES = 32


@dataclass(frozen=True)
class Transition:
    action: str
    from_status: str
    to_status: str
    changes: dict = field(default_factory=dict)


def is_client(booking, actor: Actor) -> bool:
    return actor.sub == booking.client_id and actor.has_role("client")


def is_provider(booking, actor: Actor) -> bool:
    return actor.sub == booking.provider_id and actor.has_role("provider")


def is_participant(booking, actor: Actor) -> bool:
    return is_client(booking, actor) or is_provider(booking, actor)


def authorize(action: str, booking, actor: Actor) -> None:
    if action in ("confirm", "start"):
        allowed = is_provider(booking, actor)
    elif action in ("cancel", "end"):
        allowed = is_participant(booking, actor)
    elif action == "no_show":
        allowed = actor.is_admin
    else:
        raise ValueError(f"unknown action: {action}")

    if not allowed:
        raise AuthorizationError(f"Not allowed to {action.replace('_', '-')} this booking")


def _guard(action: str, booking) -> tuple[str, str]:
    sources, target = RULES[action]
    current = BookingStatus(booking.status)
    if current not in sources:
        allowed = ", ".join(sorted(s.value for s in sources))
        raise InvalidStateError(
            f"Cannot {action.replace('_', '-')} a booking in status {current.value} (expected {allowed})"
        )
    return current.value, target.value


def as_utc(value: datetime | None) -> datetime | None:
    # some backends (sqlite) hand timezone-aware columns back naive
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def scheduled_start(booking, tz: tzinfo) -> datetime:
    return datetime.combine(booking.date, booking.start_time, tzinfo=tz)


def minutes_half_up(elapsed: timedelta) -> int:
    ms = elapsed // timedelta(milliseconds=1)
    return int((Decimal(ms) / Decimal(60000)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def new_session_id() -> str:
    return secrets.token_urlsafe(SESSION_ID_BYTES)


def confirm(booking) -> Transition:
    from_status, to_status = _guard("confirm", booking)
    return Transition("confirm", from_status, to_status, {"status": to_status})


def cancel(
    booking,
    actor: Actor,
    now: datetime,
    tz: tzinfo,
    window: timedelta = timedelta(hours=24),
    reason: str | None = None,
) -> Transition:
    from_status, to_status = _guard("cancel", booking)

    remaining = scheduled_start(booking, tz) - now
    if remaining <= window:
        raise PolicyViolationError(
            f"Bookings can only be cancelled more than {int(window.total_seconds() // 3600)}h before start"
        )

    return Transition(
        "cancel",
        from_status,
        to_status,
        {
            "status": to_status,
            "cancelled_by": actor.sub,
            "cancelled_at": now,
            "cancellation_reason": reason,
        },
    )


def start(booking, now: datetime) -> Transition:
    from_status, to_status = _guard("start", booking)
    return Transition(
        "start",
        from_status,
        to_status,
        {
            "status": to_status,
            "session_id": booking.session_id or new_session_id(),
            "session_started_at": now,
        },
    )


def end(booking, now: datetime) -> Transition:
    from_status, to_status = _guard("end", booking)

    started = as_utc(booking.session_started_at)
    actual = minutes_half_up(now - started) if started else None
    return Transition(
        "end",
        from_status,
        to_status,
        {
            "status": to_status,
            "session_ended_at": now,
            "actual_duration": actual,
        },
    )


def mark_no_show(booking) -> Transition:
    from_status, to_status = _guard("no_show", booking)
    return Transition("no_show", from_status, to_status, {"status": to_status})
