import os

# Settings are read at import time; point them at test values first.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("TELEMETRY_ENABLED", "false")
os.environ.setdefault("GEOMETRY_REFRESH_ENABLED", "false")
os.environ.setdefault("API_KEY_PEPPER", "test-pepper")

import pytest
import pytest_asyncio
import httpx

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

# Import Base + all models so metadata is complete
import app.models  # noqa: F401
from app.models.base import Base

from app.core.db import get_db
from app.main import app
from app.providers.registry import get_geocoder, get_router, get_single_flight
from app.services.single_flight import SingleFlight

from tests.stubs import DROPOFF_ADDRESS, DROPOFF_POINT, PICKUP_ADDRESS, PICKUP_POINT, StubGeocoder, StubRouter
from tests.fixtures_seed import seed_actors, seed_second_courier  # noqa: F401


def _test_db_url() -> str:
    return os.getenv("DATABASE_URL_TEST") or "sqlite+aiosqlite://"


@pytest_asyncio.fixture
async def async_engine():
    url = _test_db_url()
    kwargs: dict = {}
    if url.startswith("sqlite"):
        # one shared in-memory database for every connection in the test
        kwargs = {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}
    engine = create_async_engine(url, **kwargs)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)
        yield engine
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def db_session(async_engine):
    session_factory = async_sessionmaker(bind=async_engine, expire_on_commit=False, class_=AsyncSession)
    async with session_factory() as session:
        yield session


@pytest.fixture
def geocoder() -> StubGeocoder:
    return StubGeocoder({PICKUP_ADDRESS: PICKUP_POINT, DROPOFF_ADDRESS: DROPOFF_POINT})


@pytest.fixture
def router_stub() -> StubRouter:
    return StubRouter()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession, geocoder: StubGeocoder, router_stub: StubRouter):
    """
    HTTP client that uses the test DB session and stub providers via dependency override.
    """
    async def _override_get_db():
        yield db_session

    flight = SingleFlight()
    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_geocoder] = lambda: geocoder
    app.dependency_overrides[get_router] = lambda: router_stub
    app.dependency_overrides[get_single_flight] = lambda: flight

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
