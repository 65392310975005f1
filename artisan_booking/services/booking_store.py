import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import or_, select, text, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from artisan_booking.core.config import settings
from artisan_booking.core.errors import (
    BookingError,
    NotFoundError,
    SlotConflictError,
    TransientStoreError,
)
from artisan_booking.db.models import ACTIVE_STATUSES, Booking, User

logger = logging.getLogger(__name__)

PG_SERIALIZATION_FAILURE_SQLSTATE = "40001"
PG_DEADLOCK_DETECTED_SQLSTATE = "40P01"
PG_LOCK_NOT_AVAILABLE_SQLSTATE = "55P03"
PG_EXCLUSION_VIOLATION_SQLSTATE = "23P01"
RETRYABLE_SQLSTATES = frozenset(
    {PG_SERIALIZATION_FAILURE_SQLSTATE, PG_DEADLOCK_DETECTED_SQLSTATE, PG_LOCK_NOT_AVAILABLE_SQLSTATE}
)
ACTIVE_INTERVAL_CONSTRAINT = "ex_bookings_artisan_active_interval"
BOOKING_NOT_FOUND_DETAIL = "Booking not found"
STALE_BOOKING_DETAIL = "Booking was modified by another request. Retry the request."


def _is_postgresql_session(db: Session) -> bool:
    bind = db.get_bind()
    return bind is not None and bind.dialect.name == "postgresql"


def _sqlstate(exc: OperationalError | IntegrityError) -> str | None:
    original_error = getattr(exc, "orig", None)
    if original_error is None:
        return None

    sqlstate = getattr(original_error, "sqlstate", None)
    if sqlstate is None:
        sqlstate = getattr(original_error, "pgcode", None)
    return sqlstate


def _is_retryable(exc: OperationalError) -> bool:
    if _sqlstate(exc) in RETRYABLE_SQLSTATES:
        return True
    # sqlite reports writer contention without a sqlstate
    return "database is locked" in str(getattr(exc, "orig", exc))


def _is_active_interval_violation(exc: IntegrityError) -> bool:
    if _sqlstate(exc) == PG_EXCLUSION_VIOLATION_SQLSTATE:
        return True
    return ACTIVE_INTERVAL_CONSTRAINT in str(getattr(exc, "orig", exc))


@contextmanager
def store_transaction(db: Session) -> Iterator[Session]:
    """Run a read-modify-write against the store and commit it.

    Domain errors roll the transaction back untouched. Store contention is
    reported as :class:`TransientStoreError`, an active-interval constraint
    violation as :class:`SlotConflictError`.
    """
    try:
        yield db
        db.commit()
    except BookingError:
        db.rollback()
        raise
    except StaleDataError:
        db.rollback()
        logger.info("booking_store_stale_write")
        raise TransientStoreError(STALE_BOOKING_DETAIL) from None
    except OperationalError as exc:
        db.rollback()
        if _is_retryable(exc):
            logger.info("booking_store_contention sqlstate=%s", _sqlstate(exc))
            raise TransientStoreError() from None
        raise
    except IntegrityError as exc:
        db.rollback()
        if _is_active_interval_violation(exc):
            raise SlotConflictError() from None
        raise
    except Exception:
        db.rollback()
        raise


def _bound_lock_wait(db: Session) -> None:
    if _is_postgresql_session(db):
        db.execute(text(f"SET LOCAL lock_timeout = {int(settings.store_lock_timeout_ms)}"))


def get_booking(db: Session, booking_id: int, for_update: bool = False) -> Booking:
    query = select(Booking).where(Booking.id == booking_id)
    if for_update:
        _bound_lock_wait(db)
        query = query.with_for_update().execution_options(populate_existing=True)

    booking = db.scalar(query)
    if not booking:
        raise NotFoundError(BOOKING_NOT_FOUND_DETAIL)
    return booking


def lock_artisan_calendar(db: Session, artisan_id: int) -> None:
    """Serialize slot allocation for one artisan across every process.

    The guarding UPDATE takes the artisan row lock on PostgreSQL and the
    database write lock on SQLite; a second allocator for the same artisan
    blocks here until the first one commits and then sees its booking.
    """
    _bound_lock_wait(db)
    updated = db.execute(
        update(User)
        .where(User.id == artisan_id)
        .values(calendar_version=User.calendar_version + 1)
        .execution_options(synchronize_session=False)
    )
    if updated.rowcount != 1:
        raise NotFoundError("Artisan not found")


def find_overlapping(
    db: Session,
    artisan_id: int,
    start_at: datetime,
    end_at: datetime,
    statuses: Iterable[str] = ACTIVE_STATUSES,
    exclude_booking_id: int | None = None,
) -> Booking | None:
    query = select(Booking).where(
        Booking.artisan_id == artisan_id,
        Booking.status.in_(list(statuses)),
        Booking.start_at < end_at,
        Booking.end_at > start_at,
    )
    if exclude_booking_id is not None:
        query = query.where(Booking.id != exclude_booking_id)
    return db.scalar(query.order_by(Booking.start_at).limit(1))


def insert_booking(db: Session, booking: Booking) -> Booking:
    db.add(booking)
    db.flush()
    return booking


def update_fields(db: Session, booking_id: int, fields: dict, set_once: bool = False) -> bool:
    """Write ``fields`` onto a booking outside the ORM unit of work.

    With ``set_once`` every column must still be empty for the write to apply,
    so a value that is already stored is never overwritten. Returns whether a
    row was updated.
    """
    statement = update(Booking).where(Booking.id == booking_id)
    if set_once:
        for column_name in fields:
            column = getattr(Booking, column_name)
            statement = statement.where(or_(column.is_(None), column == ""))

    with store_transaction(db):
        result = db.execute(statement.values(**fields).execution_options(synchronize_session=False))
    return result.rowcount == 1
