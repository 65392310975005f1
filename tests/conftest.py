import os
import sys
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

sys.path.append(str(Path(__file__).resolve().parents[1]))
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")

from artisan_booking.core.rate_limiter import rate_limiter
from artisan_booking.core.security import create_access_token
from artisan_booking.db.base import Base
from artisan_booking.db.models import ArtisanService, Booking, Notification, User, UserRole  # noqa: F401
from artisan_booking.db.session import get_db
from artisan_booking.main import app
from artisan_booking.services.dispatcher import SideEffectDispatcher, get_dispatcher
from artisan_booking.services.providers import (
    ChatParty,
    MessagingProvider,
    NotificationPayload,
    NotificationProvider,
    VideoProvider,
    VideoRoom,
)

TEST_DATABASE_URL = "sqlite+pysqlite:///:memory:"
engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class RecordingNotifications(NotificationProvider):
    def __init__(self) -> None:
        self.sent: list[NotificationPayload] = []

    def notify(self, payload: NotificationPayload) -> None:
        self.sent.append(payload)


class FakeMessaging(MessagingProvider):
    def __init__(self, channel_id: str = "chan-1") -> None:
        self.channel_id = channel_id
        self.users: list[ChatParty] = []
        self.channel_calls = 0
        self.messages: list[tuple[str, str, str]] = []

    def ensure_user(self, party: ChatParty) -> None:
        self.users.append(party)

    def ensure_direct_channel(self, party_a: str, party_b: str) -> str | None:
        self.channel_calls += 1
        return self.channel_id

    def post_message(self, channel_id: str, sender_id: str, text: str) -> None:
        self.messages.append((channel_id, sender_id, text))


class FakeVideo(VideoProvider):
    def __init__(self) -> None:
        self.created: list[str] = []

    def create_private_room(self, name: str, max_participants: int = 2) -> VideoRoom | None:
        self.created.append(name)
        return VideoRoom(name=name, url=f"https://video.example.com/{name}")


@pytest.fixture(autouse=True)
def reset_database() -> None:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    rate_limiter.reset()


@pytest.fixture()
def db() -> Session:
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def notifications() -> RecordingNotifications:
    return RecordingNotifications()


@pytest.fixture()
def messaging() -> FakeMessaging:
    return FakeMessaging()


@pytest.fixture()
def video() -> FakeVideo:
    return FakeVideo()


@pytest.fixture()
def dispatcher(notifications, messaging, video) -> SideEffectDispatcher:
    return SideEffectDispatcher(
        backend="inline",
        session_factory=TestingSessionLocal,
        notifications=notifications,
        messaging=messaging,
        video=video,
    )


@pytest.fixture()
def client(dispatcher) -> TestClient:
    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def create_user(db: Session, email: str, role: UserRole = UserRole.USER, **fields) -> User:
    user = User(
        email=email,
        display_name=fields.pop("display_name", email.split("@")[0]),
        role=role.value,
        **fields,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def create_service(
    db: Session,
    artisan: User,
    name: str = "Leak repair",
    price: Decimal = Decimal("80.00"),
    duration_minutes: int | None = 90,
) -> ArtisanService:
    service = ArtisanService(
        artisan_id=artisan.id,
        name=name,
        category_name="Plumbing",
        price=price,
        duration_minutes=duration_minutes,
    )
    db.add(service)
    db.commit()
    db.refresh(service)
    return service


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(str(user.id))}"}


BASE_TIME = datetime.now(UTC).replace(minute=0, second=0, microsecond=0) + timedelta(days=2)


def future(hours: float = 24, minutes: int = 0) -> datetime:
    return BASE_TIME + timedelta(hours=hours, minutes=minutes)


@pytest.fixture()
def parties(db) -> tuple[User, User]:
    artisan = create_user(db, "artisan@example.com", role=UserRole.ARTISAN, display_name="Ada Artisan")
    customer = create_user(db, "customer@example.com", role=UserRole.USER, display_name="Cam Customer")
    return artisan, customer
