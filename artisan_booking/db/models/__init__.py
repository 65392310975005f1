from artisan_booking.db.models.booking import (
    ACTIVE_STATUSES,
    Booking,
    BookingStatus,
    ModificationRequest,
    ModificationStatus,
)
from artisan_booking.db.models.notification import Notification
from artisan_booking.db.models.service import ArtisanService
from artisan_booking.db.models.user import User, UserRole

__all__ = [
    "ACTIVE_STATUSES",
    "User",
    "UserRole",
    "ArtisanService",
    "Booking",
    "BookingStatus",
    "ModificationRequest",
    "ModificationStatus",
    "Notification",
]
