"""
Фикстуры для тестов: SQLite в памяти, лента изменений и тестовый HTTP-клиент
"""
import os

os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

from typing import AsyncGenerator, List

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import docpilot.db.models  # noqa: F401
from docpilot.core.db import get_db
from docpilot.core.security import create_access_token
from docpilot.db.base import Base
from docpilot.db.change_feed import InMemoryChangeFeed, get_change_feed
from docpilot.db.repositories.user_repository import UserRepository
from docpilot.domains.identity.entities import User
from docpilot.domains.invitations.email import EmailDeliveryResult, EmailMessage, get_email_sender
from docpilot.domains.workspaces.services import WorkspaceService

TEST_DATABASE_URL = "sqlite+aiosqlite://"


class FakeEmailSender:
    """Отправитель, который запоминает письма вместо отправки"""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[EmailMessage] = []

    async def send(self, message: EmailMessage) -> EmailDeliveryResult:
        if self.fail:
            return EmailDeliveryResult(success=False, error="Resend API error: domain not verified")
        self.sent.append(message)
        return EmailDeliveryResult(success=True, message_id=f"msg-{len(self.sent)}")


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Движок тестовой БД"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    async_session = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async with async_session() as session:
        yield session


@pytest.fixture
def feed() -> InMemoryChangeFeed:
    feed = InMemoryChangeFeed()
    yield feed
    feed.close()


@pytest.fixture
def email_sender() -> FakeEmailSender:
    return FakeEmailSender()


async def _create_user(session: AsyncSession, feed: InMemoryChangeFeed, email: str, name: str) -> User:
    return await UserRepository(session, feed).create(User.create_user(email=email, display_name=name))


@pytest_asyncio.fixture
async def alice(db_session, feed) -> User:
    return await _create_user(db_session, feed, "alice@docpilot.dev", "Alice")


@pytest_asyncio.fixture
async def bob(db_session, feed) -> User:
    return await _create_user(db_session, feed, "bob@docpilot.dev", "Bob")


@pytest_asyncio.fixture
async def carol(db_session, feed) -> User:
    return await _create_user(db_session, feed, "carol@docpilot.dev", "Carol")


@pytest_asyncio.fixture
async def workspace(db_session, feed, alice):
    """Пространство, принадлежащее alice"""
    result = await WorkspaceService(db_session, feed).create_workspace(alice.uuid, "Team Notes", "Shared notes")
    assert result.ok
    return result.value


def _auth_headers(user: User) -> dict:
    token = create_access_token({"sub": str(user.uuid), "email": user.email, "name": user.display_name})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers():
    """Заголовок Authorization с токеном пользователя"""
    return _auth_headers


@pytest_asyncio.fixture
async def client(db_session, feed, email_sender) -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTP-клиент с подмененными зависимостями"""
    from docpilot.main import app

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_change_feed] = lambda: feed
    app.dependency_overrides[get_email_sender] = lambda: email_sender

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client

    app.dependency_overrides.clear()
