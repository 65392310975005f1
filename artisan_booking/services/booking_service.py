import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import UTC, date, datetime, time, timedelta
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from artisan_booking.core.config import settings
from artisan_booking.core.errors import (
    BookingError,
    ForbiddenError,
    InactiveArtisanError,
    InvalidInputError,
    InvalidIntervalError,
    NotFoundError,
    ServiceMismatchError,
    SlotConflictError,
    UnauthenticatedError,
)
from artisan_booking.core.metrics import BOOKING_TRANSITIONS
from artisan_booking.db.models import ArtisanService, Booking, BookingStatus, User, UserRole
from artisan_booking.services import state_machine
from artisan_booking.services.booking_store import (
    find_overlapping,
    get_booking,
    insert_booking,
    lock_artisan_calendar,
    store_transaction,
)
from artisan_booking.services.dispatcher import SideEffectDispatcher, get_dispatcher

logger = logging.getLogger(__name__)

SLOT_ALREADY_BOOKED_DETAIL = "This time slot is already booked"
PROPOSED_SLOT_TAKEN_DETAIL = "The proposed time overlaps another booking"
ARTISAN_NOT_FOUND_DETAIL = "Artisan not found"
SERVICE_NOT_FOUND_DETAIL = "Service not found"


@contextmanager
def _observed(transition: str) -> Iterator[None]:
    try:
        yield
    except BookingError as exc:
        BOOKING_TRANSITIONS.labels(transition=transition, outcome=exc.code).inc()
        logger.info("booking_%s_refused code=%s", transition, exc.code)
        raise
    BOOKING_TRANSITIONS.labels(transition=transition, outcome="ok").inc()


def parse_instant(value: datetime | str, error_message: str) -> datetime:
    """Return ``value`` as an aware UTC instant; naive input is read as UTC."""
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.strip())
        except ValueError:
            raise InvalidIntervalError(error_message) from None
    if not isinstance(value, datetime):
        raise InvalidIntervalError(error_message)
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _check_length(value: str | None, limit: int, label: str) -> None:
    if value is not None and len(value) > limit:
        raise InvalidInputError(f"{label} must be at most {limit} characters")


def _resolve_artisan(db: Session, artisan_id: int) -> User:
    artisan = db.scalar(select(User).where(User.id == artisan_id, User.role == UserRole.ARTISAN.value))
    if not artisan:
        raise NotFoundError(ARTISAN_NOT_FOUND_DETAIL)
    if not artisan.is_active:
        raise InactiveArtisanError()
    return artisan


def _resolve_service(db: Session, service_id: int, artisan_id: int) -> ArtisanService:
    service = db.scalar(select(ArtisanService).where(ArtisanService.id == service_id))
    if not service:
        raise NotFoundError(SERVICE_NOT_FOUND_DETAIL)
    if service.artisan_id != artisan_id:
        raise ServiceMismatchError()
    return service


def create_booking(
    db: Session,
    requester: User | None,
    artisan_id: int,
    start_at: datetime | str,
    end_at: datetime | str | None = None,
    service_id: int | None = None,
    notes: str | None = None,
    now: datetime | None = None,
    dispatcher: SideEffectDispatcher | None = None,
) -> Booking:
    current_time = now or datetime.now(UTC)
    with _observed("create"):
        if requester is None or not requester.is_active:
            raise UnauthenticatedError()
        _check_length(notes, settings.booking_notes_max_length, "Notes")

        artisan = _resolve_artisan(db, artisan_id)

        service = None
        duration_minutes = settings.default_booking_duration_minutes
        if service_id is not None:
            service = _resolve_service(db, service_id, artisan.id)
            duration_minutes = service.duration_minutes or duration_minutes

        start = parse_instant(start_at, "Invalid start time")
        if start <= current_time:
            raise InvalidIntervalError("Start time must be in the future")
        if end_at is None:
            end = start + timedelta(minutes=duration_minutes)
        else:
            end = parse_instant(end_at, "Invalid end time")
        if end <= start:
            raise InvalidIntervalError("End time must be after start time")

        with store_transaction(db):
            lock_artisan_calendar(db, artisan.id)
            if find_overlapping(db, artisan_id=artisan.id, start_at=start, end_at=end):
                raise SlotConflictError(SLOT_ALREADY_BOOKED_DETAIL)

            booking = insert_booking(
                db,
                Booking(
                    artisan_id=artisan.id,
                    user_id=requester.id,
                    service_id=service.id if service else None,
                    service_name=service.name if service else "",
                    category_name=service.category_name if service else "",
                    duration_minutes=duration_minutes,
                    start_at=start,
                    end_at=end,
                    # server-authoritative pricing, a caller-supplied price never reaches this point
                    price=service.price if service else Decimal("0"),
                    status=BookingStatus.PENDING.value,
                    notes=notes or "",
                ),
            )

    db.refresh(booking)
    logger.info(
        "booking_created booking_id=%s artisan_id=%s user_id=%s start=%s end=%s",
        booking.id,
        booking.artisan_id,
        booking.user_id,
        booking.start_at.isoformat(),
        booking.end_at.isoformat(),
    )
    (dispatcher or get_dispatcher()).booking_requested(booking)
    return booking


def _apply_transition(
    db: Session,
    booking_id: int,
    transition: str,
    apply: Callable[[Booking], object],
) -> Booking:
    with _observed(transition), store_transaction(db):
        booking = get_booking(db, booking_id, for_update=True)
        apply(booking)

    db.refresh(booking)
    logger.info("booking_%s booking_id=%s status=%s", transition, booking.id, booking.status)
    return booking


def respond_to_booking(
    db: Session,
    booking_id: int,
    actor_id: int,
    action: str,
    reason: str | None = None,
    dispatcher: SideEffectDispatcher | None = None,
) -> Booking:
    def apply(current: Booking) -> None:
        _check_length(reason, settings.booking_reason_max_length, "Reason")
        state_machine.respond(current, actor_id=actor_id, action=action, reason=reason)

    booking = _apply_transition(db, booking_id, "respond", apply)

    dispatcher = dispatcher or get_dispatcher()
    if booking.status == BookingStatus.CONFIRMED.value:
        dispatcher.booking_confirmed(booking)
    else:
        dispatcher.booking_rejected(booking)
    return booking


def cancel_booking(
    db: Session,
    booking_id: int,
    actor_id: int,
    reason: str | None = None,
    dispatcher: SideEffectDispatcher | None = None,
) -> Booking:
    def apply(current: Booking) -> None:
        _check_length(reason, settings.booking_reason_max_length, "Reason")
        state_machine.cancel(current, actor_id=actor_id, reason=reason)

    booking = _apply_transition(db, booking_id, "cancel", apply)
    (dispatcher or get_dispatcher()).booking_cancelled(booking)
    return booking


def complete_booking(
    db: Session,
    booking_id: int,
    actor_id: int,
    dispatcher: SideEffectDispatcher | None = None,
) -> Booking:
    booking = _apply_transition(
        db,
        booking_id,
        "complete",
        lambda current: state_machine.complete(current, actor_id=actor_id),
    )
    (dispatcher or get_dispatcher()).booking_completed(booking)
    return booking


def request_modification(
    db: Session,
    booking_id: int,
    actor_id: int,
    new_start_at: datetime | str,
    new_end_at: datetime | str | None = None,
    reason: str | None = None,
    now: datetime | None = None,
    dispatcher: SideEffectDispatcher | None = None,
) -> Booking:
    def apply(current: Booking) -> None:
        if not current.is_party(actor_id):
            raise ForbiddenError()
        _check_length(reason, settings.modification_reason_max_length, "Reason")
        start = parse_instant(new_start_at, "New start time must be in the future")
        end = parse_instant(new_end_at, "Invalid new end time") if new_end_at is not None else None
        state_machine.request_modification(
            current,
            actor_id=actor_id,
            new_start_at=start,
            new_end_at=end,
            reason=reason,
            now=now,
        )

    booking = _apply_transition(db, booking_id, "request_modification", apply)
    (dispatcher or get_dispatcher()).modification_requested(booking)
    return booking


def respond_to_modification(
    db: Session,
    booking_id: int,
    actor_id: int,
    action: str,
    dispatcher: SideEffectDispatcher | None = None,
) -> Booking:
    def apply(current: Booking) -> None:
        def ensure_slot_free(start: datetime, end: datetime) -> None:
            lock_artisan_calendar(db, current.artisan_id)
            overlap = find_overlapping(
                db,
                artisan_id=current.artisan_id,
                start_at=start,
                end_at=end,
                exclude_booking_id=current.id,
            )
            if overlap:
                raise SlotConflictError(PROPOSED_SLOT_TAKEN_DETAIL)

        state_machine.respond_to_modification(
            current,
            actor_id=actor_id,
            action=action,
            ensure_slot_free=ensure_slot_free,
        )

    booking = _apply_transition(db, booking_id, "respond_modification", apply)
    (dispatcher or get_dispatcher()).modification_answered(booking)
    return booking


def get_booking_for_party(db: Session, booking_id: int, actor_id: int) -> Booking:
    booking = get_booking(db, booking_id)
    if not booking.is_party(actor_id):
        raise ForbiddenError()
    return booking


def _filtered(query, status: BookingStatus | str | None, date_from: date | None, date_to: date | None):
    if status:
        query = query.where(Booking.status == BookingStatus(status).value)
    if date_from:
        query = query.where(Booking.start_at >= datetime.combine(date_from, time.min, tzinfo=UTC))
    if date_to:
        query = query.where(Booking.start_at < datetime.combine(date_to + timedelta(days=1), time.min, tzinfo=UTC))
    return query


def list_bookings_for_user(
    db: Session,
    user_id: int,
    status: BookingStatus | str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    limit: int = 20,
    offset: int = 0,
) -> list[Booking]:
    query = _filtered(
        select(Booking).options(selectinload(Booking.artisan)).where(Booking.user_id == user_id),
        status,
        date_from,
        date_to,
    )
    return list(db.scalars(query.order_by(Booking.created_at.desc(), Booking.id.desc()).limit(limit).offset(offset)))


def list_bookings_for_artisan(
    db: Session,
    artisan_id: int,
    status: BookingStatus | str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    limit: int = 20,
    offset: int = 0,
) -> list[Booking]:
    query = _filtered(
        select(Booking).options(selectinload(Booking.user)).where(Booking.artisan_id == artisan_id),
        status,
        date_from,
        date_to,
    )
    return list(db.scalars(query.order_by(Booking.start_at, Booking.id).limit(limit).offset(offset)))
