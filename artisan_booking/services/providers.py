import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass

import httpx
from sqlalchemy.orm import Session, sessionmaker

from artisan_booking.core.config import settings
from artisan_booking.core.security import create_server_token
from artisan_booking.db.models import Notification, User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChatParty:
    id: str
    name: str
    role: str

    @classmethod
    def from_user(cls, user: User) -> "ChatParty":
        return cls(id=str(user.id), name=user.display_name or user.email.split("@")[0], role=user.role)


@dataclass(frozen=True)
class VideoRoom:
    name: str
    url: str


@dataclass(frozen=True)
class NotificationPayload:
    owner_id: int
    owner_type: str
    title: str
    text: str
    url: str = ""

    def as_dict(self) -> dict:
        return asdict(self)


class ClosableProvider:
    """Providers holding network resources release them in `close`."""

    def close(self) -> None:
        return None

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class MessagingProvider(ClosableProvider, ABC):
    @abstractmethod
    def ensure_user(self, party: ChatParty) -> None:
        raise NotImplementedError

    @abstractmethod
    def ensure_direct_channel(self, party_a: str, party_b: str) -> str | None:
        raise NotImplementedError

    @abstractmethod
    def post_message(self, channel_id: str, sender_id: str, text: str) -> None:
        raise NotImplementedError


class VideoProvider(ClosableProvider, ABC):
    @abstractmethod
    def create_private_room(self, name: str, max_participants: int = 2) -> VideoRoom | None:
        raise NotImplementedError


class NotificationProvider(ABC):
    @abstractmethod
    def notify(self, payload: NotificationPayload) -> None:
        raise NotImplementedError


class DisabledMessagingProvider(MessagingProvider):
    def ensure_user(self, party: ChatParty) -> None:
        return None

    def ensure_direct_channel(self, party_a: str, party_b: str) -> str | None:
        logger.debug("chat_disabled party_a=%s party_b=%s", party_a, party_b)
        return None

    def post_message(self, channel_id: str, sender_id: str, text: str) -> None:
        return None


class DisabledVideoProvider(VideoProvider):
    def create_private_room(self, name: str, max_participants: int = 2) -> VideoRoom | None:
        logger.debug("video_disabled room=%s", name)
        return None


class StreamChatProvider(MessagingProvider):
    """Stream Chat server-side REST client."""

    channel_type = "messaging"

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        base_url: str,
        timeout: float,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            params={"api_key": api_key},
            headers={
                "Authorization": create_server_token(api_secret),
                "Stream-Auth-Type": "jwt",
            },
        )

    def close(self) -> None:
        self._client.close()

    def _post(self, path: str, payload: dict) -> dict:
        response = self._client.post(path, json=payload)
        response.raise_for_status()
        if response.content:
            return response.json()
        return {}

    def ensure_user(self, party: ChatParty) -> None:
        self._post(
            "/users",
            {"users": {party.id: {"id": party.id, "name": party.name, "account_type": party.role}}},
        )

    def ensure_direct_channel(self, party_a: str, party_b: str) -> str | None:
        # a channel without an explicit id is distinct per member set, so repeated calls return the same one
        data = self._post(
            f"/channels/{self.channel_type}/query",
            {"data": {"members": [party_a, party_b], "created_by_id": party_a}, "state": False},
        )
        return (data.get("channel") or {}).get("id")

    def post_message(self, channel_id: str, sender_id: str, text: str) -> None:
        self._post(
            f"/channels/{self.channel_type}/{channel_id}/message",
            {"message": {"text": text, "user_id": sender_id}},
        )


class DailyVideoProvider(VideoProvider):
    """Daily.co rooms REST client."""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout: float,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={"Authorization": f"Bearer {api_key}"},
        )

    def close(self) -> None:
        self._client.close()

    def create_private_room(self, name: str, max_participants: int = 2) -> VideoRoom | None:
        existing = self._client.get(f"/rooms/{name}")
        if existing.status_code == httpx.codes.OK:
            data = existing.json()
            return VideoRoom(name=data["name"], url=data.get("url", ""))
        if existing.status_code != httpx.codes.NOT_FOUND:
            existing.raise_for_status()

        response = self._client.post(
            "/rooms",
            json={
                "name": name,
                "privacy": "private",
                "properties": {
                    "max_participants": max_participants,
                    "enable_knocking": True,
                    "enable_prejoin_ui": True,
                },
            },
        )
        response.raise_for_status()
        data = response.json()
        if not data.get("name"):
            return None
        logger.info("video_room_created room=%s", data["name"])
        return VideoRoom(name=data["name"], url=data.get("url", ""))


class DatabaseNotificationProvider(NotificationProvider):
    """Stores in-app notifications that the owner's inbox polls."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def notify(self, payload: NotificationPayload) -> None:
        if not payload.text:
            return
        db: Session = self._session_factory()
        try:
            db.add(
                Notification(
                    owner_id=payload.owner_id,
                    owner_type=payload.owner_type,
                    title=payload.title,
                    text=payload.text,
                    url=payload.url,
                )
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


def build_messaging_provider() -> MessagingProvider:
    if not settings.chat_enabled:
        return DisabledMessagingProvider()
    if not settings.stream_api_key or not settings.stream_api_secret:
        logger.warning("chat_enabled_without_credentials provider=stream")
        return DisabledMessagingProvider()
    return StreamChatProvider(
        api_key=settings.stream_api_key,
        api_secret=settings.stream_api_secret,
        base_url=settings.stream_base_url,
        timeout=settings.provider_timeout_seconds,
    )


def build_video_provider() -> VideoProvider:
    if not settings.video_enabled:
        return DisabledVideoProvider()
    if not settings.daily_api_key:
        logger.warning("video_enabled_without_credentials provider=daily")
        return DisabledVideoProvider()
    return DailyVideoProvider(
        api_key=settings.daily_api_key,
        base_url=settings.daily_base_url,
        timeout=settings.provider_timeout_seconds,
    )
