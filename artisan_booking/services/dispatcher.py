import logging
from collections.abc import Callable
from contextlib import ExitStack

from sqlalchemy.orm import sessionmaker

from artisan_booking.core.config import settings
from artisan_booking.core.metrics import SIDE_EFFECT_FAILURES
from artisan_booking.db.models import Booking
from artisan_booking.db.session import SessionLocal
from artisan_booking.services import side_effects
from artisan_booking.services.providers import (
    DatabaseNotificationProvider,
    MessagingProvider,
    NotificationPayload,
    NotificationProvider,
    VideoProvider,
    build_messaging_provider,
    build_video_provider,
)
from artisan_booking.tasks.side_effects import notify_task, provision_channels_task

logger = logging.getLogger(__name__)

BACKEND_CELERY = "celery"
BACKEND_INLINE = "inline"
BACKEND_DISABLED = "disabled"


class SideEffectDispatcher:
    """Fires post-commit side effects without ever failing the caller.

    ``celery`` enqueues the work, ``inline`` runs the same handlers in the
    calling thread, ``disabled`` drops it.
    """

    def __init__(
        self,
        backend: str = BACKEND_CELERY,
        session_factory: sessionmaker | None = None,
        notifications: NotificationProvider | None = None,
        messaging: MessagingProvider | None = None,
        video: VideoProvider | None = None,
    ) -> None:
        self.backend = backend.strip().lower()
        self._session_factory = session_factory or SessionLocal
        self._notifications = notifications
        self._messaging = messaging
        self._video = video

    def notify(self, payload: NotificationPayload) -> None:
        if self.backend == BACKEND_CELERY:
            self._enqueue("notification", lambda: notify_task.delay(payload.as_dict()))
        elif self.backend == BACKEND_INLINE:
            side_effects.deliver_notification(payload, self._notification_provider())
        else:
            logger.debug("side_effect_dropped effect=notification owner_id=%s", payload.owner_id)

    def provision_channels(self, booking_id: int) -> None:
        if self.backend == BACKEND_CELERY:
            self._enqueue("provisioning", lambda: provision_channels_task.delay(booking_id))
        elif self.backend == BACKEND_INLINE:
            self._provision_inline(booking_id)
        else:
            logger.debug("side_effect_dropped effect=provisioning booking_id=%s", booking_id)

    def booking_requested(self, booking: Booking) -> None:
        self._notify_built(side_effects.new_request_notice, booking)

    def booking_confirmed(self, booking: Booking) -> None:
        self.provision_channels(booking.id)
        self._notify_built(side_effects.confirmed_notice, booking)

    def booking_rejected(self, booking: Booking) -> None:
        self._notify_built(side_effects.rejected_notice, booking)

    def booking_cancelled(self, booking: Booking) -> None:
        self._notify_built(side_effects.cancelled_notice, booking)

    def booking_completed(self, booking: Booking) -> None:
        self._notify_built(side_effects.completed_notice, booking)

    def modification_requested(self, booking: Booking) -> None:
        self._notify_built(side_effects.modification_requested_notice, booking)

    def modification_answered(self, booking: Booking) -> None:
        self._notify_built(side_effects.modification_answered_notice, booking)

    def _notify_built(self, builder: Callable[[Booking], NotificationPayload], booking: Booking) -> None:
        try:
            payload = builder(booking)
        except Exception:
            SIDE_EFFECT_FAILURES.labels(effect="notification").inc()
            logger.exception("notification_build_failed booking_id=%s builder=%s", booking.id, builder.__name__)
            return
        self.notify(payload)

    def _enqueue(self, effect: str, send: Callable[[], object]) -> None:
        try:
            send()
        except Exception:
            SIDE_EFFECT_FAILURES.labels(effect=effect).inc()
            logger.exception("side_effect_enqueue_failed effect=%s", effect)

    def _notification_provider(self) -> NotificationProvider:
        if self._notifications is None:
            self._notifications = DatabaseNotificationProvider(session_factory=self._session_factory)
        return self._notifications

    def _provision_inline(self, booking_id: int) -> None:
        db = self._session_factory()
        try:
            # injected providers belong to the caller, built ones are closed here
            with ExitStack() as stack:
                messaging = self._messaging or stack.enter_context(build_messaging_provider())
                video = self._video or stack.enter_context(build_video_provider())
                side_effects.provision_booking_channels(
                    db=db,
                    booking_id=booking_id,
                    messaging=messaging,
                    video=video,
                )
        except Exception:
            SIDE_EFFECT_FAILURES.labels(effect="provisioning").inc()
            logger.exception("provisioning_failed booking_id=%s", booking_id)
        finally:
            db.close()


_dispatcher: SideEffectDispatcher | None = None


def get_dispatcher() -> SideEffectDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = SideEffectDispatcher(backend=settings.side_effects_backend)
    return _dispatcher
