# tests/conftest.py
from datetime import datetime

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.cache.kv import MemoryCache
from app.core.http import RetryPolicy
from app.db.base import Base
from app.db.models import master, prices, geocode, runs, cache  # noqa: F401  (register tables)
from app.db import models_user, models_rules, models_notifications  # noqa: F401
from app.db.models_user import User
from app.db.session import get_db
from app.fuelfinder.schemas import FuelFinderStation
from app.geo.postcodes import PostcodeGeocoder
from app.ingestion.service import upsert_station

# no sleeping between retries in tests
FAST_RETRY = RetryPolicy(max_attempts=3, base_delay=0)


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture()
async def engine(tmp_path):
    # Use a real file (NOT :memory:) so every session gets its own connection.
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test_fuel.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture()
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture()
def memory_cache():
    return MemoryCache()


class GeocoderStub(PostcodeGeocoder):
    """Real cache logic, canned upstream answers; counts upstream lookups."""

    def __init__(self, known: dict[str, tuple[float, float]] | None = None) -> None:
        super().__init__("http://postcodes.test", policy=FAST_RETRY)
        self.known = known or {}
        self.lookups: list[str] = []

    async def fetch(self, canonical: str):
        from app.core.errors import NotFoundError
        from app.geo.postcodes import Coordinates

        self.lookups.append(canonical)
        if canonical not in self.known:
            raise NotFoundError(f"Postcode {canonical}")
        lat, lng = self.known[canonical]
        return Coordinates(lat=lat, lng=lng)


@pytest.fixture()
def geocoder():
    return GeocoderStub({"SW1A 1AA": (51.501009, -0.141588), "EC1A 1BB": (51.520180, -0.097680)})


def station_record(station_id: str, lat: float, lng: float, **kw) -> FuelFinderStation:
    data = {
        "stationId": station_id,
        "brand": kw.pop("brand", "Shell"),
        "name": kw.pop("name", f"Station {station_id}"),
        "address": kw.pop("address", "1 High Street, London"),
        "postcode": kw.pop("postcode", "SW1A 1AA"),
        "lat": lat,
        "lng": lng,
        "petrolPrice": kw.pop("petrol", None),
        "dieselPrice": kw.pop("diesel", None),
        "updatedAt": kw.pop("updated_at", datetime(2026, 10, 1, 8, 0, 0)),
    }
    data.update(kw)
    return FuelFinderStation.model_validate(data)


@pytest.fixture()
def add_station(session_factory):
    async def _add(station_id: str, lat: float, lng: float, **kw):
        rec = station_record(station_id, lat, lng, **kw)
        async with session_factory() as db:
            async with db.begin():
                await upsert_station(db, rec)
        return rec

    return _add


@pytest.fixture()
def add_user(session_factory):
    async def _add(email: str) -> str:
        async with session_factory() as db:
            user = User(email=email)
            db.add(user)
            await db.commit()
            return user.id

    return _add


@pytest.fixture()
def services(session_factory, geocoder, memory_cache):
    from app.services.container import build_services

    return build_services(session_factory, cache=memory_cache, geocoder=geocoder)


@pytest.fixture()
async def client(session_factory, services):
    from app.main import app
    from app.services.container import get_services

    async def _override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_services] = lambda: services

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
