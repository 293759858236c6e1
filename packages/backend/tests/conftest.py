"""Test fixtures — a fresh in-memory database per test.

Learn: Testing pattern for async SQLAlchemy + FastAPI:

1. Each test gets its own SQLite in-memory engine (StaticPool keeps the
   single connection alive), with the schema created from the models.
2. Services and the HTTP client share one AsyncSession, so a test can
   call the API and then inspect rows (or age them) directly.
3. Email goes to a RecordingMailer; the code/link a user would receive
   is read back from it.

Environment is set BEFORE importing warden, because Settings and the
module-level engine/app are built at import time.
"""

import os
import re

os.environ.setdefault("WARDEN_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("WARDEN_JWT_ACCESS_SECRET", "test-access-secret-0123456789abcdef")
os.environ.setdefault("WARDEN_JWT_REFRESH_SECRET", "test-refresh-secret-0123456789abcdef")
os.environ.setdefault("WARDEN_BCRYPT_ROUNDS", "4")
os.environ.setdefault("WARDEN_PRUNE_INTERVAL_SECONDS", "0")
os.environ.setdefault("WARDEN_REDIS_URL", "redis://localhost:1/0")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from warden.auth.dependencies import get_mailer  # noqa: E402
from warden.config import get_settings  # noqa: E402
from warden.db.engine import get_db  # noqa: E402
from warden.db.models import Base  # noqa: E402
from warden.main import app  # noqa: E402
from warden.services.auth_service import AuthService  # noqa: E402
from warden.services.email_service import Mailer  # noqa: E402
from warden.services.errors import DeliveryError  # noqa: E402
from warden.services.seed import seed_roles  # noqa: E402

TEST_GRANTS = {
    "administrator": ["users.read", "users.write"],
    "user": ["users.read"],
}

ALICE = {"email": "alice@example.com", "password": "secret1", "name": "Alice"}


class RecordingMailer(Mailer):
    """Keeps every message instead of sending it."""

    def __init__(self):
        self.messages: list[dict] = []

    async def send(self, to, subject, text_body, html_body):
        self.messages.append(
            {"to": to, "subject": subject, "text": text_body, "html": html_body}
        )

    def last_code(self) -> str:
        return re.search(r"\b(\d{6})\b", self.messages[-1]["text"]).group(1)

    def last_reset_token(self) -> str:
        return re.search(r"token=([0-9a-f]+)", self.messages[-1]["text"]).group(1)


class FailingMailer(Mailer):
    """Every send fails like an unreachable SMTP server."""

    def __init__(self):
        self.attempts = 0

    async def send(self, to, subject, text_body, html_body):
        self.attempts += 1
        raise DeliveryError()


@pytest.fixture()
def settings():
    return get_settings()


@pytest_asyncio.fixture()
async def db_session():
    """Per-test session over a brand-new in-memory database."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session = AsyncSession(bind=engine, expire_on_commit=False)
    try:
        await seed_roles(session, TEST_GRANTS)
        yield session
    finally:
        await session.close()
        await engine.dispose()


@pytest.fixture()
def mailer():
    return RecordingMailer()


@pytest.fixture()
def service(db_session, settings, mailer):
    return AuthService(db_session, settings, mailer)


@pytest_asyncio.fixture()
async def alice(service):
    """A registered administrator."""
    return await service.register(**ALICE, role="administrator")


@pytest_asyncio.fixture()
async def alice_tokens(service, mailer, alice):
    """Alice after a full login: password, then emailed code."""
    await service.login(ALICE["email"], ALICE["password"])
    return await service.verify_two_factor(ALICE["email"], mailer.last_code())


@pytest_asyncio.fixture()
async def client(db_session, mailer):
    """HTTP client with the app's get_db and mailer overridden for testing."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_mailer] = lambda: mailer

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
