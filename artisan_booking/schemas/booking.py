from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from artisan_booking.core.config import settings


class BookingCreateRequest(BaseModel):
    artisan_id: int
    service_id: int | None = None
    start_at: str = Field(min_length=1)
    end_at: str | None = None
    notes: str | None = Field(default=None, max_length=settings.booking_notes_max_length)

    # unknown fields such as a client-side price are dropped
    model_config = {"extra": "ignore"}


class BookingRespondRequest(BaseModel):
    action: str = Field(min_length=1, max_length=20)
    reason: str | None = Field(default=None, max_length=settings.booking_reason_max_length)


class BookingCancelRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=settings.booking_reason_max_length)


class ModificationCreateRequest(BaseModel):
    new_start_at: str = Field(min_length=1)
    new_end_at: str | None = None
    reason: str | None = Field(default=None, max_length=settings.modification_reason_max_length)


class ModificationRespondRequest(BaseModel):
    action: str = Field(min_length=1, max_length=20)


class ModificationRequestResponse(BaseModel):
    new_start_at: datetime
    new_end_at: datetime
    reason: str
    requested_by_id: int
    requested_at: datetime
    status: str

    model_config = {"from_attributes": True}


class BookingResponse(BaseModel):
    id: int
    artisan_id: int
    user_id: int
    service_id: int | None
    service_name: str
    category_name: str
    duration_minutes: int
    start_at: datetime
    end_at: datetime
    price: Decimal
    status: str
    notes: str
    rejection_reason: str | None
    cancellation_reason: str | None
    cancelled_by_id: int | None
    responded_at: datetime | None
    completed_at: datetime | None
    chat_channel_id: str | None
    video_room_name: str | None
    video_room_url: str | None
    modification_request: ModificationRequestResponse | None
    created_at: datetime

    model_config = {"from_attributes": True}


class UserBookingSummaryResponse(BookingResponse):
    artisan_name: str


class ArtisanBookingSummaryResponse(BookingResponse):
    customer_name: str
    customer_email: str
