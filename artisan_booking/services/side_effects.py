"""Best-effort work that follows a committed booking transition.

Handlers here never raise: a failing provider is logged and counted, and the
committed booking stays authoritative. Chat and video identifiers are written
with set-once updates, so running a handler twice is harmless.
"""

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from artisan_booking.core.config import settings
from artisan_booking.core.metrics import SIDE_EFFECT_FAILURES
from artisan_booking.db.models import Booking, ModificationStatus, UserRole
from artisan_booking.services.booking_store import update_fields
from artisan_booking.services.providers import (
    ChatParty,
    MessagingProvider,
    NotificationPayload,
    NotificationProvider,
    VideoProvider,
)

logger = logging.getLogger(__name__)

VIDEO_ROOM_MAX_PARTICIPANTS = 2


def _service_label(booking: Booking) -> str:
    return booking.service_name or "a service"


def _format_day(value: datetime) -> str:
    return value.strftime("%d %b %Y")


def _format_moment(value: datetime) -> str:
    return value.strftime("%d %b %Y at %H:%M UTC")


def _with_reason(text: str, reason: str | None) -> str:
    if reason:
        return f"{text} Reason: {reason}"
    return text


def _owner_type(booking: Booking, owner_id: int) -> str:
    if owner_id == booking.artisan_id:
        return UserRole.ARTISAN.value
    return UserRole.USER.value


def video_room_name_for(booking_id: int) -> str:
    return f"booking-{booking_id}"


def new_request_notice(booking: Booking) -> NotificationPayload:
    return NotificationPayload(
        owner_id=booking.artisan_id,
        owner_type=UserRole.ARTISAN.value,
        title="New Booking Request",
        text=(
            f"You have a new booking request for {_service_label(booking)} on "
            f"{_format_day(booking.start_at)}. Please respond to confirm or decline."
        ),
        url=settings.frontend_bookings_url,
    )


def confirmed_notice(booking: Booking) -> NotificationPayload:
    return NotificationPayload(
        owner_id=booking.user_id,
        owner_type=UserRole.USER.value,
        title="Booking Confirmed",
        text=(
            f"Your booking for {_service_label(booking)} on {_format_moment(booking.start_at)} "
            "has been confirmed."
        ),
        url=settings.frontend_bookings_url,
    )


def rejected_notice(booking: Booking) -> NotificationPayload:
    return NotificationPayload(
        owner_id=booking.user_id,
        owner_type=UserRole.USER.value,
        title="Booking Declined",
        text=_with_reason(
            f"Your booking request for {_service_label(booking)} was declined.",
            booking.rejection_reason,
        ),
        url=settings.frontend_bookings_url,
    )


def cancelled_notice(booking: Booking) -> NotificationPayload:
    owner_id = booking.counterparty_of(booking.cancelled_by_id)
    return NotificationPayload(
        owner_id=owner_id,
        owner_type=_owner_type(booking, owner_id),
        title="Booking Cancelled",
        text=_with_reason(
            f"A booking for {_service_label(booking)} has been cancelled.",
            booking.cancellation_reason,
        ),
        url=settings.frontend_bookings_url,
    )


def completed_notice(booking: Booking) -> NotificationPayload:
    return NotificationPayload(
        owner_id=booking.user_id,
        owner_type=UserRole.USER.value,
        title="Service Completed",
        text=(
            f"Your booking for {_service_label(booking)} has been marked as completed. "
            "How was your experience? Leave a review!"
        ),
        url=settings.frontend_bookings_url,
    )


def modification_requested_notice(booking: Booking) -> NotificationPayload:
    request = booking.modification_request
    owner_id = booking.counterparty_of(request.requested_by_id)
    return NotificationPayload(
        owner_id=owner_id,
        owner_type=_owner_type(booking, owner_id),
        title="Booking Change Requested",
        text=_with_reason(
            f"A change was proposed for your booking for {_service_label(booking)}: "
            f"{_format_moment(request.new_start_at)}. Please approve or decline.",
            request.reason,
        ),
        url=settings.frontend_bookings_url,
    )


def modification_answered_notice(booking: Booking) -> NotificationPayload:
    request = booking.modification_request
    approved = request.status == ModificationStatus.APPROVED.value
    if approved:
        title = "Booking Change Approved"
        text = (
            f"Your booking for {_service_label(booking)} now starts on "
            f"{_format_moment(booking.start_at)}."
        )
    else:
        title = "Booking Change Declined"
        text = f"Your requested change for {_service_label(booking)} was declined."
    return NotificationPayload(
        owner_id=request.requested_by_id,
        owner_type=_owner_type(booking, request.requested_by_id),
        title=title,
        text=text,
        url=settings.frontend_bookings_url,
    )


def deliver_notification(payload: NotificationPayload, provider: NotificationProvider) -> bool:
    try:
        provider.notify(payload)
    except Exception:
        SIDE_EFFECT_FAILURES.labels(effect="notification").inc()
        logger.exception(
            "notification_failed owner_id=%s owner_type=%s title=%s",
            payload.owner_id,
            payload.owner_type,
            payload.title,
        )
        return False
    return True


def ensure_chat_channel(db: Session, booking: Booking, messaging: MessagingProvider) -> str | None:
    if booking.chat_channel_id:
        return booking.chat_channel_id
    try:
        messaging.ensure_user(ChatParty.from_user(booking.artisan))
        messaging.ensure_user(ChatParty.from_user(booking.user))
        channel_id = messaging.ensure_direct_channel(str(booking.artisan_id), str(booking.user_id))
        if not channel_id:
            return None
        if update_fields(db, booking.id, {"chat_channel_id": channel_id}, set_once=True):
            messaging.post_message(
                channel_id,
                str(booking.artisan_id),
                f"Booking confirmed for {booking.service_name or 'your request'}!",
            )
        return channel_id
    except Exception:
        SIDE_EFFECT_FAILURES.labels(effect="chat").inc()
        logger.exception("chat_provisioning_failed booking_id=%s", booking.id)
        return None


def ensure_video_room(db: Session, booking: Booking, video: VideoProvider) -> str | None:
    if booking.video_room_name:
        return booking.video_room_name
    try:
        room = video.create_private_room(
            video_room_name_for(booking.id),
            max_participants=VIDEO_ROOM_MAX_PARTICIPANTS,
        )
        if room is None:
            return None
        update_fields(
            db,
            booking.id,
            {"video_room_name": room.name, "video_room_url": room.url},
            set_once=True,
        )
        return room.name
    except Exception:
        SIDE_EFFECT_FAILURES.labels(effect="video").inc()
        logger.exception("video_provisioning_failed booking_id=%s", booking.id)
        return None


def provision_booking_channels(
    db: Session,
    booking_id: int,
    messaging: MessagingProvider,
    video: VideoProvider,
) -> None:
    booking = db.get(Booking, booking_id)
    if booking is None:
        logger.warning("provisioning_skipped booking_id=%s reason=not_found", booking_id)
        return

    ensure_chat_channel(db=db, booking=booking, messaging=messaging)
    ensure_video_room(db=db, booking=booking, video=video)
