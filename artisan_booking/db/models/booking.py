from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import ForeignKey, Index, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from artisan_booking.db.base import Base
from artisan_booking.db.types import UTCDateTime


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


ACTIVE_STATUSES = frozenset({BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value})


class ModificationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass(frozen=True)
class ModificationRequest:
    new_start_at: datetime
    new_end_at: datetime
    reason: str
    requested_by_id: int
    requested_at: datetime
    status: str

    @property
    def is_pending(self) -> bool:
        return self.status == ModificationStatus.PENDING.value


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        Index("ix_bookings_artisan_interval", "artisan_id", "start_at", "end_at"),
        Index("ix_bookings_user_status", "user_id", "status"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    artisan_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    service_id: Mapped[int | None] = mapped_column(
        ForeignKey("artisan_services.id", ondelete="SET NULL"), nullable=True, index=True
    )
    service_name: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    category_name: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    duration_minutes: Mapped[int] = mapped_column(nullable=False)

    start_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    end_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BookingStatus.PENDING.value, index=True
    )
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")

    rejection_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    cancelled_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=True)
    responded_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # set once by the side-effect dispatcher, never overwritten
    chat_channel_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    video_room_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    video_room_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # embedded modification request; modification_status IS NULL means there is none
    modification_new_start_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    modification_new_end_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    modification_reason: Mapped[str | None] = mapped_column(String(300), nullable=True)
    modification_requested_by_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"), nullable=True
    )
    modification_requested_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    modification_status: Mapped[str | None] = mapped_column(String(20), nullable=True)

    version: Mapped[int] = mapped_column(nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, server_default=func.now())

    artisan = relationship("User", foreign_keys=[artisan_id])
    user = relationship("User", foreign_keys=[user_id])
    service = relationship("ArtisanService")

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def modification_request(self) -> ModificationRequest | None:
        if self.modification_status is None:
            return None
        return ModificationRequest(
            new_start_at=self.modification_new_start_at,
            new_end_at=self.modification_new_end_at,
            reason=self.modification_reason or "",
            requested_by_id=self.modification_requested_by_id,
            requested_at=self.modification_requested_at,
            status=self.modification_status,
        )

    @modification_request.setter
    def modification_request(self, value: ModificationRequest) -> None:
        self.modification_new_start_at = value.new_start_at
        self.modification_new_end_at = value.new_end_at
        self.modification_reason = value.reason
        self.modification_requested_by_id = value.requested_by_id
        self.modification_requested_at = value.requested_at
        self.modification_status = value.status

    def is_party(self, user_id: int) -> bool:
        return user_id in (self.user_id, self.artisan_id)

    def counterparty_of(self, user_id: int) -> int:
        return self.artisan_id if user_id == self.user_id else self.user_id
