from artisan_booking.db.session import SessionLocal
from artisan_booking.services.providers import (
    DatabaseNotificationProvider,
    NotificationPayload,
    build_messaging_provider,
    build_video_provider,
)
from artisan_booking.services.side_effects import deliver_notification, provision_booking_channels
from artisan_booking.tasks.celery_app import celery_app


@celery_app.task(name="bookings.notify")
def notify_task(payload: dict) -> dict[str, bool]:
    delivered = deliver_notification(
        NotificationPayload(**payload),
        DatabaseNotificationProvider(session_factory=SessionLocal),
    )
    return {"delivered": delivered}


@celery_app.task(name="bookings.provision_channels")
def provision_channels_task(booking_id: int) -> dict[str, int]:
    db = SessionLocal()
    try:
        with build_messaging_provider() as messaging, build_video_provider() as video:
            provision_booking_channels(db=db, booking_id=booking_id, messaging=messaging, video=video)
        return {"booking_id": booking_id}
    finally:
        db.close()
