from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from artisan_booking.api.deps import get_current_user, require_roles
from artisan_booking.api.pagination import LimitParam, OffsetParam
from artisan_booking.core.config import settings
from artisan_booking.core.rate_limiter import rate_limiter
from artisan_booking.db.models import BookingStatus, User, UserRole
from artisan_booking.db.session import get_db
from artisan_booking.schemas.booking import (
    ArtisanBookingSummaryResponse,
    BookingCancelRequest,
    BookingCreateRequest,
    BookingRespondRequest,
    BookingResponse,
    ModificationCreateRequest,
    ModificationRespondRequest,
    UserBookingSummaryResponse,
)
from artisan_booking.services import booking_service
from artisan_booking.services.dispatcher import SideEffectDispatcher, get_dispatcher

router = APIRouter(prefix="/bookings", tags=["bookings"])


def _rate_limit_or_raise(current_user: User, response: Response) -> None:
    retry_after = rate_limiter.hit(
        key=f"create:{current_user.id}",
        limit=settings.booking_create_max_attempts,
        window_seconds=settings.booking_rate_limit_window_seconds,
    )
    if retry_after:
        response.headers["Retry-After"] = str(retry_after)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests. Please try again later.",
            headers={"Retry-After": str(retry_after)},
        )


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(
    payload: BookingCreateRequest,
    response: Response,
    current_user: User = Depends(require_roles(UserRole.USER)),
    db: Session = Depends(get_db),
    dispatcher: SideEffectDispatcher = Depends(get_dispatcher),
) -> BookingResponse:
    _rate_limit_or_raise(current_user=current_user, response=response)
    booking = booking_service.create_booking(
        db=db,
        requester=current_user,
        artisan_id=payload.artisan_id,
        service_id=payload.service_id,
        start_at=payload.start_at,
        end_at=payload.end_at,
        notes=payload.notes,
        dispatcher=dispatcher,
    )
    return BookingResponse.model_validate(booking)


@router.get("/me", response_model=list[UserBookingSummaryResponse], status_code=status.HTTP_200_OK)
def list_my_bookings(
    status_filter: BookingStatus | None = Query(default=None, alias="status"),
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    limit: LimitParam = 20,
    offset: OffsetParam = 0,
    current_user: User = Depends(require_roles(UserRole.USER)),
    db: Session = Depends(get_db),
) -> list[UserBookingSummaryResponse]:
    bookings = booking_service.list_bookings_for_user(
        db=db,
        user_id=current_user.id,
        status=status_filter,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )
    return [
        UserBookingSummaryResponse(
            **BookingResponse.model_validate(booking).model_dump(),
            artisan_name=booking.artisan.display_name,
        )
        for booking in bookings
    ]


@router.get("/artisan", response_model=list[ArtisanBookingSummaryResponse], status_code=status.HTTP_200_OK)
def list_artisan_bookings(
    status_filter: BookingStatus | None = Query(default=None, alias="status"),
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    limit: LimitParam = 20,
    offset: OffsetParam = 0,
    current_user: User = Depends(require_roles(UserRole.ARTISAN)),
    db: Session = Depends(get_db),
) -> list[ArtisanBookingSummaryResponse]:
    bookings = booking_service.list_bookings_for_artisan(
        db=db,
        artisan_id=current_user.id,
        status=status_filter,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )
    return [
        ArtisanBookingSummaryResponse(
            **BookingResponse.model_validate(booking).model_dump(),
            customer_name=booking.user.display_name,
            customer_email=booking.user.email,
        )
        for booking in bookings
    ]


@router.get("/{booking_id}", response_model=BookingResponse, status_code=status.HTTP_200_OK)
def get_booking_by_id(
    booking_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> BookingResponse:
    booking = booking_service.get_booking_for_party(db=db, booking_id=booking_id, actor_id=current_user.id)
    return BookingResponse.model_validate(booking)


@router.patch("/{booking_id}/respond", response_model=BookingResponse, status_code=status.HTTP_200_OK)
def respond_to_booking(
    booking_id: int,
    payload: BookingRespondRequest,
    current_user: User = Depends(require_roles(UserRole.ARTISAN)),
    db: Session = Depends(get_db),
    dispatcher: SideEffectDispatcher = Depends(get_dispatcher),
) -> BookingResponse:
    booking = booking_service.respond_to_booking(
        db=db,
        booking_id=booking_id,
        actor_id=current_user.id,
        action=payload.action,
        reason=payload.reason,
        dispatcher=dispatcher,
    )
    return BookingResponse.model_validate(booking)


@router.patch("/{booking_id}/complete", response_model=BookingResponse, status_code=status.HTTP_200_OK)
def complete_booking(
    booking_id: int,
    current_user: User = Depends(require_roles(UserRole.ARTISAN)),
    db: Session = Depends(get_db),
    dispatcher: SideEffectDispatcher = Depends(get_dispatcher),
) -> BookingResponse:
    booking = booking_service.complete_booking(
        db=db,
        booking_id=booking_id,
        actor_id=current_user.id,
        dispatcher=dispatcher,
    )
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/cancel", response_model=BookingResponse, status_code=status.HTTP_200_OK)
def cancel_booking(
    booking_id: int,
    payload: BookingCancelRequest | None = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    dispatcher: SideEffectDispatcher = Depends(get_dispatcher),
) -> BookingResponse:
    booking = booking_service.cancel_booking(
        db=db,
        booking_id=booking_id,
        actor_id=current_user.id,
        reason=payload.reason if payload else None,
        dispatcher=dispatcher,
    )
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/modify", response_model=BookingResponse, status_code=status.HTTP_200_OK)
def request_modification(
    booking_id: int,
    payload: ModificationCreateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    dispatcher: SideEffectDispatcher = Depends(get_dispatcher),
) -> BookingResponse:
    booking = booking_service.request_modification(
        db=db,
        booking_id=booking_id,
        actor_id=current_user.id,
        new_start_at=payload.new_start_at,
        new_end_at=payload.new_end_at,
        reason=payload.reason,
        dispatcher=dispatcher,
    )
    return BookingResponse.model_validate(booking)


@router.patch("/{booking_id}/modify/respond", response_model=BookingResponse, status_code=status.HTTP_200_OK)
def respond_to_modification(
    booking_id: int,
    payload: ModificationRespondRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    dispatcher: SideEffectDispatcher = Depends(get_dispatcher),
) -> BookingResponse:
    booking = booking_service.respond_to_modification(
        db=db,
        booking_id=booking_id,
        actor_id=current_user.id,
        action=payload.action,
        dispatcher=dispatcher,
    )
    return BookingResponse.model_validate(booking)
