"""Booking lifecycle transitions.

Every function here validates a transition against the booking snapshot it is
given and only then mutates it, so a raised error always leaves the booking
untouched. Nothing in this module talks to the database or to providers.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from enum import Enum

from artisan_booking.core.errors import (
    AlreadyHandledError,
    ForbiddenError,
    InvalidActionError,
    InvalidIntervalError,
    InvalidStateError,
    ModificationConflictError,
)
from artisan_booking.db.models import (
    ACTIVE_STATUSES,
    Booking,
    BookingStatus,
    ModificationRequest,
    ModificationStatus,
)

BOOKING_TRANSITIONS: dict[str, frozenset[str]] = {
    BookingStatus.PENDING.value: frozenset(
        {BookingStatus.CONFIRMED.value, BookingStatus.REJECTED.value, BookingStatus.CANCELLED.value}
    ),
    BookingStatus.CONFIRMED.value: frozenset({BookingStatus.COMPLETED.value, BookingStatus.CANCELLED.value}),
    BookingStatus.REJECTED.value: frozenset(),
    BookingStatus.CANCELLED.value: frozenset(),
    BookingStatus.COMPLETED.value: frozenset(),
}


class ResponseAction(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"


class ModificationAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


def can_transition(current: str, target: str) -> bool:
    return target in BOOKING_TRANSITIONS.get(current, frozenset())


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(UTC)


def _parse_action(value: str, action_type: type[Enum], hint: str):
    try:
        return action_type(str(value).strip().lower())
    except ValueError:
        raise InvalidActionError(f"Invalid action (use {hint})") from None


def _require_artisan_owner(booking: Booking, actor_id: int) -> None:
    if actor_id != booking.artisan_id:
        raise ForbiddenError()


def _require_party(booking: Booking, actor_id: int) -> None:
    if not booking.is_party(actor_id):
        raise ForbiddenError()


def _move_to(booking: Booking, target: BookingStatus) -> None:
    if not can_transition(booking.status, target.value):
        raise InvalidStateError(f"Cannot move a {booking.status} booking to {target.value}")
    booking.status = target.value
    if target.value not in ACTIVE_STATUSES:
        _close_pending_modification(booking)


def _close_pending_modification(booking: Booking) -> None:
    # a live modification request cannot outlive an active booking
    if booking.modification_status == ModificationStatus.PENDING.value:
        booking.modification_status = ModificationStatus.REJECTED.value


def validate_interval(start_at: datetime, end_at: datetime, now: datetime, label: str = "Start time") -> None:
    if start_at.tzinfo is None or end_at.tzinfo is None:
        raise InvalidIntervalError("Times must include a timezone offset")
    if start_at <= now:
        raise InvalidIntervalError(f"{label} must be in the future")
    if end_at <= start_at:
        raise InvalidIntervalError("End time must be after start time")


def respond(
    booking: Booking,
    actor_id: int,
    action: str,
    reason: str | None = None,
    now: datetime | None = None,
) -> ResponseAction:
    _require_artisan_owner(booking, actor_id)
    if booking.status != BookingStatus.PENDING.value:
        raise AlreadyHandledError()
    parsed = _parse_action(action, ResponseAction, "accept or reject")

    booking.responded_at = _now(now)
    if parsed is ResponseAction.ACCEPT:
        _move_to(booking, BookingStatus.CONFIRMED)
        booking.rejection_reason = None
    else:
        _move_to(booking, BookingStatus.REJECTED)
        booking.rejection_reason = reason or ""
    return parsed


def cancel(booking: Booking, actor_id: int, reason: str | None = None) -> None:
    _require_party(booking, actor_id)
    if booking.status not in ACTIVE_STATUSES:
        raise InvalidStateError(f"Cannot cancel a {booking.status} booking")

    _move_to(booking, BookingStatus.CANCELLED)
    booking.cancellation_reason = reason or ""
    booking.cancelled_by_id = actor_id


def complete(booking: Booking, actor_id: int, now: datetime | None = None) -> None:
    _require_artisan_owner(booking, actor_id)
    if booking.status != BookingStatus.CONFIRMED.value:
        raise InvalidStateError("Only confirmed bookings can be marked as completed")

    _move_to(booking, BookingStatus.COMPLETED)
    booking.completed_at = _now(now)


def request_modification(
    booking: Booking,
    actor_id: int,
    new_start_at: datetime,
    new_end_at: datetime | None = None,
    reason: str | None = None,
    now: datetime | None = None,
) -> ModificationRequest:
    current_time = _now(now)
    _require_party(booking, actor_id)
    if booking.status not in ACTIVE_STATUSES:
        raise InvalidStateError("Only pending or confirmed bookings can be modified")
    pending = booking.modification_request
    if pending is not None and pending.is_pending:
        raise ModificationConflictError("A modification request is already pending")

    if new_end_at is None:
        duration: timedelta = booking.end_at - booking.start_at
        new_end_at = new_start_at + duration
    validate_interval(new_start_at, new_end_at, current_time, label="New start time")

    request = ModificationRequest(
        new_start_at=new_start_at,
        new_end_at=new_end_at,
        reason=reason or "",
        requested_by_id=actor_id,
        requested_at=current_time,
        status=ModificationStatus.PENDING.value,
    )
    booking.modification_request = request
    return request


def respond_to_modification(
    booking: Booking,
    actor_id: int,
    action: str,
    ensure_slot_free: Callable[[datetime, datetime], None] | None = None,
) -> ModificationAction:
    """Approve or reject the live modification request of ``booking``.

    ``ensure_slot_free`` is called with the proposed interval before an
    approval is applied and is expected to raise when the slot is taken.
    """
    _require_party(booking, actor_id)
    request = booking.modification_request
    if request is None or not request.is_pending:
        raise ModificationConflictError("No pending modification request")
    if request.requested_by_id == actor_id:
        raise InvalidActionError("You cannot respond to your own modification request")
    parsed = _parse_action(action, ModificationAction, "approve or reject")

    if parsed is ModificationAction.APPROVE:
        if ensure_slot_free is not None:
            ensure_slot_free(request.new_start_at, request.new_end_at)
        booking.start_at = request.new_start_at
        booking.end_at = request.new_end_at
        booking.modification_status = ModificationStatus.APPROVED.value
    else:
        booking.modification_status = ModificationStatus.REJECTED.value
    return parsed
