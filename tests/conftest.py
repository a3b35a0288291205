import os

# Ensure config reads these during import in tests.
os.environ.setdefault("CHAT_STORE", "memory")
os.environ.setdefault("JWT_SECRET", "test-secret-0123456789abcdef0123456789")
os.environ.setdefault("TYPING_TTL_SECONDS", "10")
os.environ.pop("REDIS_URL", None)

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError

from wardrobe_chat import config
from wardrobe_chat.main import create_app
from wardrobe_chat.repositories.conversation_repository import ConversationRepository
from wardrobe_chat.repositories.memory_repository import InMemoryConversationRepository
from wardrobe_chat.repositories.user_repository import InMemoryUserRepository
from wardrobe_chat.schemas.chat import ItemSummary, UserSummary
from wardrobe_chat.services.conversation_service import ConversationService
from wardrobe_chat.utils.security import create_access_token


ALICE = "64b7f0c2a1b2c3d4e5f60001"
BOB = "64b7f0c2a1b2c3d4e5f60002"
CAROL = "64b7f0c2a1b2c3d4e5f60003"
ITEM = "64b7f0c2a1b2c3d4e5f6aaaa"


class FakeClock:

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        # strictly increasing so timestamps order like appends
        self.now = self.now + timedelta(milliseconds=1)
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryConversationRepository()


@asynccontextmanager
async def mongo_repository():
    """ConversationRepository on a throwaway database; skips without a reachable MongoDB."""
    client = AsyncIOMotorClient(config.MONGO_URL, tz_aware=True, serverSelectionTimeoutMS=500)
    try:
        await client.admin.command("ping")
    except PyMongoError:
        client.close()
        pytest.skip(f"MongoDB not reachable at {config.MONGO_URL}")
    db = client[f"wardrobe_chat_test_{uuid.uuid4().hex[:12]}"]
    repo = ConversationRepository(db)
    await repo.ensure_indexes()
    try:
        yield repo
    finally:
        await client.drop_database(db.name)
        client.close()


@pytest_asyncio.fixture(params=["memory", "mongo"])
async def any_store(request):
    if request.param == "memory":
        yield InMemoryConversationRepository()
        return
    async with mongo_repository() as repo:
        yield repo


@pytest.fixture
def users():
    return InMemoryUserRepository(
        users={
            ALICE: UserSummary(id=ALICE, name="Alice", profile_image="alice.png"),
            BOB: UserSummary(id=BOB, name="Bob"),
        },
        items={ITEM: ItemSummary(id=ITEM, name="Denim jacket", image_url="jacket.png")},
    )


@pytest.fixture
def service(store, users, clock):
    return ConversationService(store, users=users, clock=clock)


@pytest.fixture
def app(store, users, clock):
    return create_app(store=store, users=users, clock=clock)


def auth_headers(user_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}
