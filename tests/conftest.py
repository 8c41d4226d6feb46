"""Shared pytest fixtures for store, cache, resolver and API tests."""

from collections.abc import AsyncGenerator, Awaitable, Callable

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from shortlink.cache import CacheResult
from shortlink.config import Settings
from shortlink.database import Base
from shortlink.dependencies import ServiceManager, get_service_manager
from shortlink.main import app
from shortlink.models import Link, Visit
from shortlink.resolver import Resolver
from shortlink.schemas import VisitDetails
from shortlink.store import RecordStore

CACHE_TTL_SECONDS = 60


# ============================================================================
# CACHE SUBSTITUTES
# ============================================================================


class ManualClock:
    def __init__(self) -> None:
        self.now = 1_000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeCache:
    """In-memory cache honouring TTLs against an injectable clock."""

    def __init__(self, clock: Callable[[], float]) -> None:
        self._clock = clock
        self.entries: dict[str, tuple[str, float]] = {}
        self.gets: list[str] = []
        self.sets: list[tuple[str, str, int]] = []
        self.deletes: list[str] = []

    def peek(self, key: str) -> str | None:
        entry = self.entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self.entries[key]
            return None
        return value

    async def get(self, key: str) -> CacheResult:
        self.gets.append(key)
        value = self.peek(key)
        return CacheResult.miss() if value is None else CacheResult.hit(value)

    async def set(self, key: str, value: str, ttl_seconds: int) -> CacheResult:
        self.sets.append((key, value, ttl_seconds))
        self.entries[key] = (value, self._clock() + ttl_seconds)
        return CacheResult.ok()

    async def delete(self, key: str) -> CacheResult:
        self.deletes.append(key)
        self.entries.pop(key, None)
        return CacheResult.ok()

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class FailingCache:
    """Cache whose every operation fails like an unreachable server."""

    def __init__(self) -> None:
        self.calls = 0

    def _fail(self) -> CacheResult:
        self.calls += 1
        return CacheResult.failed(ConnectionError("cache unreachable"))

    async def get(self, key: str) -> CacheResult:
        return self._fail()

    async def set(self, key: str, value: str, ttl_seconds: int) -> CacheResult:
        return self._fail()

    async def delete(self, key: str) -> CacheResult:
        return self._fail()

    async def ping(self) -> bool:
        return False

    async def close(self) -> None:
        return None


# ============================================================================
# STORE
# ============================================================================


class CountingStore(RecordStore):
    """RecordStore that counts lookups and visit writes."""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
        super().__init__(sessionmaker)
        self.find_calls = 0
        self.append_calls = 0

    async def find_by_code(self, code: str) -> Link | None:
        self.find_calls += 1
        return await super().find_by_code(code)

    async def append_visit(self, link_id: int, details: VisitDetails) -> int:
        self.append_calls += 1
        return await super().append_visit(link_id, details)


class RefusingSessionmaker:
    """Session factory whose connections are refused like a down PostgreSQL."""

    def __call__(self) -> "RefusingSessionmaker":
        return self

    def begin(self) -> "RefusingSessionmaker":
        return self

    async def __aenter__(self) -> AsyncSession:
        raise ConnectionRefusedError(111, "Connect call failed ('127.0.0.1', 5432)")

    async def __aexit__(self, *exc_info) -> bool:
        return False


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    # File-backed so concurrent sessions use separate connections.
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'shortlink.db'}",
        connect_args={"timeout": 30},
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def refusing_sessionmaker() -> RefusingSessionmaker:
    return RefusingSessionmaker()


@pytest.fixture
def store(sessionmaker: async_sessionmaker[AsyncSession]) -> CountingStore:
    return CountingStore(sessionmaker)


@pytest.fixture
def make_link(store: CountingStore) -> Callable[..., Awaitable[Link]]:
    async def _make_link(
        short_code: str = "abc123",
        original_url: str = "https://example.com",
        custom_alias: str | None = None,
    ) -> Link:
        return await store.add(Link(short_code=short_code, original_url=original_url, custom_alias=custom_alias))

    return _make_link


@pytest.fixture
def count_visits(sessionmaker: async_sessionmaker[AsyncSession]) -> Callable[[int], Awaitable[int]]:
    async def _count_visits(link_id: int) -> int:
        async with sessionmaker() as session:
            result = await session.execute(select(func.count()).select_from(Visit).where(Visit.link_id == link_id))
            return result.scalar_one()

    return _count_visits


# ============================================================================
# RESOLVER AND APP
# ============================================================================


@pytest.fixture
def settings() -> Settings:
    return Settings(
        APP_ENV="test",
        REDIS_URL="",
        CACHE_EXPIRY=CACHE_TTL_SECONDS,
        GEOIP_DB_PATH=None,
    )


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def cache(clock: ManualClock) -> FakeCache:
    return FakeCache(clock)


@pytest.fixture
def failing_cache() -> FailingCache:
    return FailingCache()


@pytest.fixture
def resolver(store: CountingStore, cache: FakeCache, settings: Settings) -> Resolver:
    return Resolver(store, cache, settings)


@pytest.fixture
def manager(store: CountingStore, cache: FakeCache, settings: Settings) -> ServiceManager:
    return ServiceManager().configure(settings=settings, cache=cache, store=store)


@pytest_asyncio.fixture(scope="function")
async def client(manager: ServiceManager) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_service_manager() -> ServiceManager:
        return manager

    app.dependency_overrides[get_service_manager] = override_get_service_manager

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        # Requests carry no User-Agent unless a test sets one.
        del ac.headers["user-agent"]
        yield ac

    app.dependency_overrides.clear()
