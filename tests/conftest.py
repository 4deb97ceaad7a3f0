"""
Shared fixtures: an in-memory SQLite database per test, the FastAPI app
with its dependencies overridden, a fake clock and seeding helpers.
"""

import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENV_MODE"] = "development"
os.environ["CACHE_BACKEND"] = "memory"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["DEBUG"] = "false"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from lanchonete.core.cache import MemoryStore, ResponseCache, get_cache
from lanchonete.core.rate_limit import RateLimiter, get_rate_limiter
from lanchonete.core.security import UserRole, create_access_token, hash_password
from lanchonete.database import Base, get_db
from lanchonete.main import app
from lanchonete.models import Category, DiningTable, Product, User
from lanchonete.services.notifications import MockNotificationChannel, get_notification_channel

PASSWORD = "senha123"
PASSWORD_HASH = hash_password(PASSWORD)


class FakeClock:
    """Millisecond clock moved by hand."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


# =============================================================================
# DATABASE
# =============================================================================

@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# =============================================================================
# APP
# =============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return ResponseCache(store=MemoryStore(), clock=clock)


@pytest.fixture
def limiter(clock):
    return RateLimiter(store=MemoryStore(), clock=clock)


@pytest.fixture
def channel():
    return MockNotificationChannel(failure_rate=0, latency=None)


@pytest.fixture
async def client(session_factory, cache, limiter, channel):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cache] = lambda: cache
    app.dependency_overrides[get_rate_limiter] = lambda: limiter
    app.dependency_overrides[get_notification_channel] = lambda: channel

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# =============================================================================
# SEEDING
# =============================================================================

@pytest.fixture
def seed(session_factory):
    """Insert rows in a short-lived session and return them detached."""

    async def _seed(*objects):
        async with session_factory() as session:
            session.add_all(objects)
            await session.commit()
        return objects[0] if len(objects) == 1 else objects

    return _seed


@pytest.fixture
def make_user(seed):
    counter = {"n": 0}

    async def _make_user(role: UserRole = UserRole.CUSTOMER, email: str = None, name: str = None) -> User:
        counter["n"] += 1
        n = counter["n"]
        return await seed(User(
            email=email or f"{role.value.lower()}{n}@lanchonete.com",
            name=name or f"{role.value.title()} {chr(64 + n)}",
            password_hash=PASSWORD_HASH,
            role=role,
        ))

    return _make_user


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.email, user.role)}"}


@pytest.fixture
async def staff(make_user):
    return await make_user(UserRole.STAFF)


@pytest.fixture
async def admin(make_user):
    return await make_user(UserRole.ADMIN)


@pytest.fixture
async def customer(make_user):
    return await make_user(UserRole.CUSTOMER)


@pytest.fixture
async def menu(seed):
    """One category with two available products and one unavailable."""
    category = await seed(Category(name="Lanches"))
    burger, soda, off = await seed(
        Product(name="X-Burger", price=20.0, category_id=category.id),
        Product(name="Refrigerante", price=5.5, category_id=category.id),
        Product(name="X-Especial", price=30.0, category_id=category.id, is_available=False),
    )
    return {"category": category, "burger": burger, "soda": soda, "off": off}


@pytest.fixture
async def table(seed):
    return await seed(DiningTable(number=1, capacity=4))
