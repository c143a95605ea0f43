"""
Test infrastructure for the Blog API.

Strategy
--------
- SQLite in-memory via aiosqlite eliminates the need for a running Postgres
  instance in CI, keeping the suite fast and self-contained.
- StaticPool forces all async tasks to share the same in-memory database
  connection; a new connection would see an empty database.
- The app's get_db dependency is overridden so every test-time request uses
  the test session factory rather than the production one.
- The credential manager is overridden with a fixed secret and the minimum
  bcrypt cost so hashing does not dominate the run time.
- All tables are created fresh before each test and dropped after.
- The Redis cache is disabled by setting cache._redis = None; the
  CacheManager treats that as "no cache" so tests exercise the database path.
"""
import fnmatch
from datetime import timedelta

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from blog_api.cache import cache
from blog_api.database import Base, get_db
from blog_api.dependencies import get_credential_manager
from blog_api.main import app
from blog_api.middleware import install_query_counter
from blog_api.models import User
from blog_api.security import CredentialManager

# ---------------------------------------------------------------------------
# Test database engine — SQLite in-memory with aiosqlite
# ---------------------------------------------------------------------------

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine_test = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

install_query_counter(engine_test)

async_session_test = async_sessionmaker(
    engine_test,
    class_=AsyncSession,
    expire_on_commit=False,
)

TEST_CREDENTIALS = CredentialManager(
    secret_key="test-secret",
    expires_in=timedelta(days=1),
    bcrypt_rounds=4,
)

DEFAULT_PASSWORD = "password123"


# ---------------------------------------------------------------------------
# Dependency overrides
# ---------------------------------------------------------------------------

async def override_get_db():
    async with async_session_test() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            cache.discard_pending(session)
            raise
        await cache.apply_pending(session)


app.dependency_overrides[get_db] = override_get_db
app.dependency_overrides[get_credential_manager] = lambda: TEST_CREDENTIALS


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test, drop after to guarantee isolation."""
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def db_session() -> AsyncSession:
    """Live session for tests that call services or inspect rows directly."""
    async with async_session_test() as session:
        yield session


@pytest_asyncio.fixture
async def async_client() -> AsyncClient:
    """httpx.AsyncClient wired to the FastAPI app via ASGITransport, Redis disabled."""
    cache._redis = None
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


class FakeRedis:
    """In-memory stand-in for the redis.asyncio calls CacheManager makes."""

    def __init__(self) -> None:
        self.store: dict[str, str] = {}

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> str | None:
        return self.store.get(key)

    async def set(self, key: str, value: str, ex: int | None = None) -> None:
        self.store[key] = value

    async def scan_iter(self, match: str = "*"):
        for key in list(self.store):
            if fnmatch.fnmatchcase(key, match):
                yield key

    async def delete(self, *keys: str) -> int:
        return sum(self.store.pop(key, None) is not None for key in keys)

    async def aclose(self) -> None:
        self.store.clear()


@pytest_asyncio.fixture
async def fake_redis(async_client) -> FakeRedis:
    """Route the cache through an in-memory Redis for the duration of a test."""
    fake = FakeRedis()
    cache._redis = fake
    yield fake
    cache._redis = None


@pytest.fixture
def credentials() -> CredentialManager:
    return TEST_CREDENTIALS


@pytest_asyncio.fixture
async def create_user():
    """
    Factory that inserts a committed user and returns ``(user, headers)``
    where *headers* carries a valid bearer token for that user.
    """

    async def _create(
        email: str = "member@example.com",
        *,
        role: str = "user",
        is_active: bool = True,
        password: str = DEFAULT_PASSWORD,
        full_name: str = "Member Person",
        user_name: str | None = None,
    ) -> tuple[User, dict]:
        async with async_session_test() as session:
            user = User(
                full_name=full_name,
                user_name=user_name or email.split("@")[0],
                email=email,
                password=await TEST_CREDENTIALS.hash_password(password),
                role=role,
                is_active=is_active,
            )
            session.add(user)
            await session.commit()
        token = TEST_CREDENTIALS.issue_token(user.id)
        return user, {"Authorization": f"Bearer {token}"}

    return _create


@pytest_asyncio.fixture
async def admin(create_user) -> tuple[User, dict]:
    return await create_user("admin@example.com", role="admin", full_name="Site Admin")


@pytest_asyncio.fixture
async def member(create_user) -> tuple[User, dict]:
    return await create_user("member@example.com")
