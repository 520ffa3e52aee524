"""Shared test fixtures."""

from __future__ import annotations

import os
import tempfile
from collections.abc import AsyncGenerator, Awaitable, Callable
from unittest.mock import AsyncMock, MagicMock

# Settings are read when gifts.main is imported, so the environment comes first.
_TMP_DIR = tempfile.mkdtemp(prefix="gifts_test_")
os.environ.setdefault("GIFTS_JWT_SECRET", "test-secret-for-gifts-backend-0123456789abcdef")
os.environ["GIFTS_DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TMP_DIR, 'default.db')}"
os.environ["GIFTS_LOG_FORMAT"] = "console"
os.environ["GIFTS_AUTH_UNIFORM_MIN_LATENCY_MS"] = "0"
os.environ["GIFTS_SIGNUP_CODE_COOLDOWN_SECONDS"] = "0"
os.environ["GIFTS_RESET_CODE_COOLDOWN_SECONDS"] = "0"
os.environ["GIFTS_RATE_LIMIT_REQUESTS"] = "10000"
os.environ["GIFTS_RATE_LIMIT_AUTH"] = "1000"
os.environ["GIFTS_RATE_LIMIT_SENSITIVE"] = "100"
os.environ["GIFTS_STORE_RETRY_BACKOFF_SECONDS"] = "0"
os.environ["GIFTS_IMAGE_STORAGE_ENABLED"] = "false"

import fakeredis  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from gifts import tasks  # noqa: E402
from gifts.auth.password import hash_password  # noqa: E402
from gifts.config import get_settings  # noqa: E402
from gifts.database import close_db, get_engine, init_db  # noqa: E402
from gifts.db.base import Base  # noqa: E402
from gifts.email.service import reset_email_service  # noqa: E402
from gifts.events.service import reset_create_deduplicator as reset_event_dedup  # noqa: E402
from gifts.main import create_app  # noqa: E402
from gifts.memories.service import reset_create_deduplicator as reset_memory_dedup  # noqa: E402
from gifts.redis_client import set_redis  # noqa: E402
from gifts.rowstore import Row, SqlRowStore, close_store, eq, init_store  # noqa: E402
from gifts.storage.service import ImageStorage, init_image_storage  # noqa: E402
from gifts.users.invite_codes import generate_invite_code  # noqa: E402
from tests.helpers import TEST_PASSWORD, FakeBlobStore  # noqa: E402


@pytest_asyncio.fixture
async def store(tmp_path) -> AsyncGenerator[SqlRowStore, None]:
    """A fresh SQLite database with the full schema, installed as the process store."""
    await init_db(f"sqlite+aiosqlite:///{tmp_path / 'gifts.db'}")
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    row_store = SqlRowStore(engine)
    init_store(row_store)
    reset_memory_dedup()
    reset_event_dedup()

    yield row_store

    await tasks.drain()
    close_store()
    await close_db()


@pytest_asyncio.fixture
async def redis_client() -> AsyncGenerator[fakeredis.FakeAsyncRedis, None]:
    rc = fakeredis.FakeAsyncRedis(decode_responses=True)
    set_redis(rc)
    yield rc
    set_redis(None)
    await rc.aclose()


@pytest.fixture
def blob_store() -> FakeBlobStore:
    return FakeBlobStore()


@pytest.fixture
def image_storage(blob_store: FakeBlobStore) -> ImageStorage:
    storage = ImageStorage(blob_store, max_image_bytes=get_settings().max_image_bytes)
    init_image_storage(storage)
    return storage


@pytest_asyncio.fixture
async def client(store, redis_client, image_storage) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client over the ASGI app with an in-memory store, redis and bucket."""
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    await tasks.drain()


@pytest.fixture
def mock_email_service(monkeypatch):
    """Mock the email service to prevent actual email sending."""
    mock_service = MagicMock()
    mock_service.send_template = AsyncMock(return_value=True)
    mock_service.send_email = AsyncMock(return_value=True)

    monkeypatch.setattr("gifts.auth.service.get_email_service", lambda *a, **kw: mock_service)
    monkeypatch.setattr("gifts.binding.service.get_email_service", lambda *a, **kw: mock_service)
    yield mock_service
    reset_email_service()


MakeUser = Callable[..., Awaitable[Row]]


@pytest.fixture
def make_user(store: SqlRowStore) -> MakeUser:
    """Insert a verified user directly, skipping the emailed-code flow."""
    counter = {"n": 0}

    async def _make(email: str | None = None, *, gender: str = "male", name: str | None = None, **extra) -> Row:
        counter["n"] += 1
        email = email or f"user{counter['n']}@example.com"
        rows = await store.insert(
            "users",
            {
                "email": email,
                "password_hash": hash_password(TEST_PASSWORD),
                "invitation_code": generate_invite_code(),
                "email_verified": True,
                "gender": gender,
                "name": name or email.split("@")[0],
                **extra,
            },
        )
        return rows[0]

    return _make


@pytest_asyncio.fixture
async def alice(make_user) -> Row:
    return await make_user("alice@example.com", gender="female", name="Alice")


@pytest_asyncio.fixture
async def bob(make_user) -> Row:
    return await make_user("bob@example.com", gender="male", name="Bob")


@pytest_asyncio.fixture
async def couple(store: SqlRowStore, alice: Row, bob: Row) -> tuple[Row, Row]:
    """Alice and Bob, already bound to each other."""
    a = await store.update(
        "users",
        {"partner_id": bob["id"], "bound_invitation_code": bob["invitation_code"]},
        where=eq("id", alice["id"]),
    )
    b = await store.update(
        "users",
        {"partner_id": alice["id"], "bound_invitation_code": alice["invitation_code"]},
        where=eq("id", bob["id"]),
    )
    return a[0], b[0]
