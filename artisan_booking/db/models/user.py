from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from artisan_booking.db.base import Base


class UserRole(str, Enum):
    USER = "user"
    ARTISAN = "artisan"


class User(Base):
    """A booking party. Artisans are users with the ``artisan`` role."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=UserRole.USER.value)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # bumped by every slot allocation so concurrent allocations for one artisan serialize on this row
    calendar_version: Mapped[int] = mapped_column(nullable=False, default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    services = relationship("ArtisanService", back_populates="artisan", cascade="all, delete-orphan")

    @property
    def is_artisan(self) -> bool:
        return self.role == UserRole.ARTISAN.value
