from datetime import UTC, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from artisan_booking.core.errors import (
    AlreadyHandledError,
    ForbiddenError,
    InactiveArtisanError,
    InvalidActionError,
    InvalidInputError,
    InvalidIntervalError,
    InvalidStateError,
    NotFoundError,
    ServiceMismatchError,
    SlotConflictError,
    UnauthenticatedError,
)
from artisan_booking.db.models import Booking, BookingStatus, ModificationStatus, User, UserRole
from artisan_booking.services import booking_service
from conftest import create_service, create_user, future


def _create(db, dispatcher, requester, artisan, start, end=None, **kwargs):
    return booking_service.create_booking(
        db=db,
        requester=requester,
        artisan_id=artisan.id,
        start_at=start,
        end_at=end,
        dispatcher=dispatcher,
        **kwargs,
    )


def test_create_booking_is_pending_with_catalog_price(db, dispatcher, parties):
    artisan, customer = parties
    service = create_service(db, artisan, price=Decimal("80.00"))

    booking = _create(db, dispatcher, customer, artisan, future(10), future(11), service_id=service.id)

    assert booking.status == BookingStatus.PENDING.value
    assert booking.price == Decimal("80.00")
    assert booking.service_name == "Leak repair"
    assert booking.category_name == "Plumbing"
    assert booking.start_at == future(10)
    assert booking.end_at == future(11)
    assert booking.modification_request is None


def test_overlapping_request_conflicts_and_back_to_back_succeeds(db, dispatcher, parties):
    artisan, customer = parties
    second = create_user(db, "second@example.com")
    third = create_user(db, "third@example.com")
    _create(db, dispatcher, customer, artisan, future(10), future(11))

    with pytest.raises(SlotConflictError):
        _create(db, dispatcher, second, artisan, future(10, 30), future(11, 30))

    adjacent = _create(db, dispatcher, third, artisan, future(11), future(12))
    assert adjacent.status == BookingStatus.PENDING.value
    assert db.query(Booking).count() == 2


def test_inactive_bookings_do_not_block_the_slot(db, dispatcher, parties):
    artisan, customer = parties
    first = _create(db, dispatcher, customer, artisan, future(10), future(11))
    booking_service.cancel_booking(db, first.id, actor_id=customer.id, dispatcher=dispatcher)

    again = _create(db, dispatcher, customer, artisan, future(10), future(11))

    assert again.id != first.id


def test_other_artisans_calendar_is_independent(db, dispatcher, parties):
    artisan, customer = parties
    other_artisan = create_user(db, "other-artisan@example.com", role=UserRole.ARTISAN)
    _create(db, dispatcher, customer, artisan, future(10), future(11))

    booking = _create(db, dispatcher, customer, other_artisan, future(10), future(11))

    assert booking.artisan_id == other_artisan.id


def test_end_defaults_to_service_duration_then_sixty_minutes(db, dispatcher, parties):
    artisan, customer = parties
    service = create_service(db, artisan, duration_minutes=90)

    with_service = _create(db, dispatcher, customer, artisan, future(10), service_id=service.id)
    without_service = _create(db, dispatcher, customer, artisan, future(14))

    assert with_service.end_at - with_service.start_at == timedelta(minutes=90)
    assert without_service.end_at - without_service.start_at == timedelta(minutes=60)
    assert without_service.price == Decimal("0")


def test_string_instants_are_parsed_as_utc(db, dispatcher, parties):
    artisan, customer = parties
    start = future(10)

    booking = _create(db, dispatcher, customer, artisan, start.strftime("%Y-%m-%dT%H:%M:%S"))

    assert booking.start_at == start
    assert booking.start_at.tzinfo is not None


def test_unknown_artisan_is_not_found(db, dispatcher, parties):
    _, customer = parties

    with pytest.raises(NotFoundError):
        booking_service.create_booking(db=db, requester=customer, artisan_id=9999, start_at=future(10))


def test_customer_id_is_not_an_artisan(db, dispatcher, parties):
    _, customer = parties

    with pytest.raises(NotFoundError):
        booking_service.create_booking(db=db, requester=customer, artisan_id=customer.id, start_at=future(10))


def test_inactive_artisan_is_checked_before_the_interval(db, dispatcher, parties):
    _, customer = parties
    resting = create_user(db, "resting@example.com", role=UserRole.ARTISAN, is_active=False)

    with pytest.raises(InactiveArtisanError):
        booking_service.create_booking(db=db, requester=customer, artisan_id=resting.id, start_at="not a date")


def test_service_of_another_artisan_is_rejected(db, dispatcher, parties):
    artisan, customer = parties
    other_artisan = create_user(db, "other@example.com", role=UserRole.ARTISAN)
    foreign_service = create_service(db, other_artisan)

    with pytest.raises(ServiceMismatchError):
        _create(db, dispatcher, customer, artisan, future(10), service_id=foreign_service.id)


def test_missing_service_is_not_found(db, dispatcher, parties):
    artisan, customer = parties

    with pytest.raises(NotFoundError):
        _create(db, dispatcher, customer, artisan, future(10), service_id=4242)


@pytest.mark.parametrize("start", ["tomorrow-ish", ""])
def test_unparseable_start_is_invalid_interval(db, dispatcher, parties, start):
    artisan, customer = parties

    with pytest.raises(InvalidIntervalError):
        _create(db, dispatcher, customer, artisan, start)


def test_past_start_and_reversed_end_are_invalid(db, dispatcher, parties):
    artisan, customer = parties
    past = future(10) - timedelta(days=10)

    with pytest.raises(InvalidIntervalError):
        _create(db, dispatcher, customer, artisan, past, past + timedelta(hours=1))
    with pytest.raises(InvalidIntervalError):
        _create(db, dispatcher, customer, artisan, future(10), future(10))

    assert db.query(Booking).count() == 0


def test_missing_or_inactive_requester_is_unauthenticated(db, dispatcher, parties):
    artisan, customer = parties
    customer.is_active = False
    db.commit()

    with pytest.raises(UnauthenticatedError):
        _create(db, dispatcher, None, artisan, future(10))
    with pytest.raises(UnauthenticatedError):
        _create(db, dispatcher, customer, artisan, future(10))


def test_accept_then_accept_again_is_already_handled(db, dispatcher, parties):
    artisan, customer = parties
    booking = _create(db, dispatcher, customer, artisan, future(10), future(11))

    confirmed = booking_service.respond_to_booking(db, booking.id, artisan.id, "accept", dispatcher=dispatcher)
    assert confirmed.status == BookingStatus.CONFIRMED.value
    assert confirmed.responded_at is not None

    with pytest.raises(AlreadyHandledError):
        booking_service.respond_to_booking(db, booking.id, artisan.id, "accept", dispatcher=dispatcher)


def test_customer_cannot_respond_to_own_request(db, dispatcher, parties):
    artisan, customer = parties
    booking = _create(db, dispatcher, customer, artisan, future(10), future(11))

    with pytest.raises(ForbiddenError):
        booking_service.respond_to_booking(db, booking.id, customer.id, "accept", dispatcher=dispatcher)

    db.expire_all()
    assert db.get(Booking, booking.id).status == BookingStatus.PENDING.value


def test_unknown_booking_is_not_found(db, dispatcher, parties):
    artisan, _ = parties

    with pytest.raises(NotFoundError):
        booking_service.complete_booking(db, 12345, artisan.id, dispatcher=dispatcher)


def test_modification_round_trip_and_self_approval_block(db, dispatcher, parties):
    artisan, customer = parties
    booking = _create(db, dispatcher, customer, artisan, future(10), future(11))
    booking_service.respond_to_booking(db, booking.id, artisan.id, "accept", dispatcher=dispatcher)
    new_start = future(38)

    requested = booking_service.request_modification(
        db, booking.id, customer.id, new_start_at=new_start, reason="Later", dispatcher=dispatcher
    )
    assert requested.modification_request.status == ModificationStatus.PENDING.value
    assert requested.modification_request.new_end_at == new_start + timedelta(hours=1)

    with pytest.raises(InvalidActionError):
        booking_service.respond_to_modification(db, booking.id, customer.id, "approve", dispatcher=dispatcher)

    approved = booking_service.respond_to_modification(db, booking.id, artisan.id, "approve", dispatcher=dispatcher)
    assert approved.start_at == new_start
    assert approved.end_at == new_start + timedelta(hours=1)
    assert approved.modification_request.status == ModificationStatus.APPROVED.value
    assert approved.status == BookingStatus.CONFIRMED.value


def test_approving_into_a_taken_slot_conflicts(db, dispatcher, parties):
    artisan, customer = parties
    other = create_user(db, "other-customer@example.com")
    booking = _create(db, dispatcher, customer, artisan, future(10), future(11))
    _create(db, dispatcher, other, artisan, future(14), future(15))
    booking_service.request_modification(
        db, booking.id, customer.id, new_start_at=future(14, 30), dispatcher=dispatcher
    )

    with pytest.raises(SlotConflictError):
        booking_service.respond_to_modification(db, booking.id, artisan.id, "approve", dispatcher=dispatcher)

    db.expire_all()
    stored = db.get(Booking, booking.id)
    assert stored.start_at == future(10)
    assert stored.modification_status == ModificationStatus.PENDING.value


def test_shifting_within_own_interval_does_not_conflict_with_itself(db, dispatcher, parties):
    artisan, customer = parties
    booking = _create(db, dispatcher, customer, artisan, future(10), future(12))
    booking_service.request_modification(
        db, booking.id, artisan.id, new_start_at=future(11), dispatcher=dispatcher
    )

    moved = booking_service.respond_to_modification(db, booking.id, customer.id, "approve", dispatcher=dispatcher)

    assert moved.start_at == future(11)
    assert moved.end_at == future(13)


def test_stranger_cannot_request_modification(db, dispatcher, parties):
    artisan, customer = parties
    stranger = create_user(db, "stranger@example.com")
    booking = _create(db, dispatcher, customer, artisan, future(10), future(11))

    with pytest.raises(ForbiddenError):
        booking_service.request_modification(db, booking.id, stranger.id, new_start_at="garbage")


def test_completing_pending_booking_is_invalid_state(db, dispatcher, parties):
    artisan, customer = parties
    booking = _create(db, dispatcher, customer, artisan, future(10), future(11))

    with pytest.raises(InvalidStateError):
        booking_service.complete_booking(db, booking.id, artisan.id, dispatcher=dispatcher)

    db.expire_all()
    assert db.get(Booking, booking.id).status == BookingStatus.PENDING.value


def test_cancel_then_cancel_again_is_invalid_state(db, dispatcher, parties):
    artisan, customer = parties
    booking = _create(db, dispatcher, customer, artisan, future(10), future(11))

    cancelled = booking_service.cancel_booking(db, booking.id, customer.id, reason="Sick", dispatcher=dispatcher)
    assert cancelled.cancelled_by_id == customer.id
    assert cancelled.cancellation_reason == "Sick"

    with pytest.raises(InvalidStateError) as exc_info:
        booking_service.cancel_booking(db, booking.id, artisan.id, dispatcher=dispatcher)
    assert "cancelled" in exc_info.value.message


def test_listings_filter_by_party_and_status(db, dispatcher, parties):
    artisan, customer = parties
    other = create_user(db, "lister@example.com")
    first = _create(db, dispatcher, customer, artisan, future(10), future(11))
    _create(db, dispatcher, other, artisan, future(8), future(9))
    _create(db, dispatcher, customer, artisan, future(30), future(31))
    booking_service.respond_to_booking(db, first.id, artisan.id, "accept", dispatcher=dispatcher)

    mine = booking_service.list_bookings_for_user(db, customer.id)
    confirmed = booking_service.list_bookings_for_user(db, customer.id, status="confirmed")
    artisan_view = booking_service.list_bookings_for_artisan(db, artisan.id)
    first_day = booking_service.list_bookings_for_artisan(
        db, artisan.id, date_from=future(8).date(), date_to=future(11).date()
    )

    assert {booking.user_id for booking in mine} == {customer.id}
    assert len(mine) == 2
    assert [booking.id for booking in confirmed] == [first.id]
    assert [booking.start_at for booking in artisan_view] == [future(8), future(10), future(30)]
    assert all(booking.start_at.astimezone(UTC).date() <= future(11).date() for booking in first_day)


def test_party_can_read_booking_but_stranger_cannot(db, dispatcher, parties):
    artisan, customer = parties
    stranger = create_user(db, "peek@example.com")
    booking = _create(db, dispatcher, customer, artisan, future(10), future(11))

    assert booking_service.get_booking_for_party(db, booking.id, artisan.id).id == booking.id
    with pytest.raises(ForbiddenError):
        booking_service.get_booking_for_party(db, booking.id, stranger.id)


def test_calendar_lock_bumps_artisan_version(db, dispatcher, parties):
    artisan, customer = parties
    _create(db, dispatcher, customer, artisan, future(10), future(11))

    db.expire_all()
    version = db.scalar(select(User.calendar_version).where(User.id == artisan.id))
    assert version == 1


def test_oversized_notes_are_rejected_before_any_write(db, dispatcher, parties):
    artisan, customer = parties

    with pytest.raises(InvalidInputError):
        _create(db, dispatcher, customer, artisan, future(10), future(11), notes="x" * 501)

    assert db.scalar(select(Booking)) is None
    booking = _create(db, dispatcher, customer, artisan, future(10), future(11), notes="x" * 500)
    assert len(booking.notes) == 500


def test_oversized_reasons_leave_the_booking_unchanged(db, dispatcher, parties):
    artisan, customer = parties
    booking = _create(db, dispatcher, customer, artisan, future(10), future(11))

    with pytest.raises(InvalidInputError):
        booking_service.respond_to_booking(db, booking.id, artisan.id, "reject", reason="r" * 501, dispatcher=dispatcher)
    with pytest.raises(InvalidInputError):
        booking_service.cancel_booking(db, booking.id, customer.id, reason="r" * 501, dispatcher=dispatcher)
    with pytest.raises(InvalidInputError):
        booking_service.request_modification(
            db,
            booking.id,
            customer.id,
            new_start_at=future(14),
            reason="r" * 301,
            dispatcher=dispatcher,
        )

    db.expire_all()
    stored = db.get(Booking, booking.id)
    assert stored.status == BookingStatus.PENDING.value
    assert stored.rejection_reason is None
    assert stored.cancellation_reason is None
    assert stored.modification_request is None
