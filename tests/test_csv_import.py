# tests/test_csv_import.py
import csv
import io
import json

import httpx
import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.cache.kv import MemoryCache
from app.core.errors import InvalidQueryError
from app.core.http import RetryPolicy
from app.db.base import Base
from app.db.models.master import Station
from app.db.models.prices import StationPriceHistory, StationPriceLatest
from app.db.models.runs import IngestionRun
from app.fuelfinder.client import FuelFinderClient
from app.fuelfinder.oauth import TokenProvider
from app.fuelfinder.schemas import FuelFinderStation
from app.ingestion import service as ingestion_service
from app.ingestion.csv_import import parse_stations_csv
from app.ingestion.service import IngestionService

FAST_RETRY = RetryPolicy(max_attempts=3, base_delay=0)

pytestmark = pytest.mark.anyio

HEADER = [
    "station_id", "name", "brand", "address", "postcode", "lat", "lng",
    "petrol_price", "diesel_price", "updated_at", "amenities", "opening_hours",
]

PAYLOAD = [
    {
        "stationId": "A1",
        "brand": "Shell",
        "name": "Shell Strand",
        "address": "1 Strand, London",
        "postcode": "WC2N 5HR",
        "lat": 51.5074,
        "lng": -0.1278,
        "petrolPrice": 150.5,
        "dieselPrice": 158.9,
        "updatedAt": "2026-10-18T08:00:00Z",
        "amenities": {"shop": True, "carWash": False},
        "openingHours": {"mon": "06:00-22:00"},
    },
    {
        "stationId": "B2",
        "brand": "BP",
        "name": "BP Old Kent Road",
        "address": "200 Old Kent Road, London",
        "postcode": "SE1 5TY",
        "lat": 51.4876,
        "lng": -0.0743,
        "petrolPrice": 147.9,
        "dieselPrice": None,
        "updatedAt": "2026-10-17T21:30:00Z",
        "amenities": None,
        "openingHours": None,
    },
]


def _to_csv(records, header=HEADER):
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(header)
    for r in records:
        writer.writerow(
            [
                r["stationId"], r["name"], r["brand"], r["address"], r["postcode"],
                r["lat"], r["lng"],
                "null" if r["petrolPrice"] is None else r["petrolPrice"],
                "" if r["dieselPrice"] is None else r["dieselPrice"],
                r["updatedAt"],
                json.dumps(r["amenities"]) if r["amenities"] else "",
                json.dumps(r["openingHours"]) if r["openingHours"] else "",
            ][: len(header)]
        )
    return buf.getvalue()


def test_parses_rows_into_station_records():
    stations = parse_stations_csv(_to_csv(PAYLOAD))

    assert [s.stationId for s in stations] == ["A1", "B2"]
    assert stations[0].address == "1 Strand, London"
    assert stations[0].amenities == {"shop": True, "carWash": False}
    assert stations[0].petrol_ppl == 151
    assert stations[1].dieselPrice is None
    assert stations[1].amenities is None


def test_csv_and_api_payload_validate_to_the_same_records():
    from_api = [FuelFinderStation.model_validate(r) for r in PAYLOAD]
    assert parse_stations_csv(_to_csv(PAYLOAD)) == from_api


def test_optional_columns_may_be_omitted():
    stations = parse_stations_csv(_to_csv(PAYLOAD, header=HEADER[:10]))
    assert stations[0].openingHours is None


def test_unreadable_json_column_is_dropped():
    text = _to_csv(PAYLOAD[:1]).replace('"{""shop"": true, ""carWash"": false}"', "not-json")
    assert parse_stations_csv(text)[0].amenities is None


@pytest.mark.parametrize(
    "text, message",
    [
        ("", "empty"),
        ("   \n ", "empty"),
        (",".join(HEADER), "No data rows"),
        (",".join(h for h in HEADER if h != "lat") + "\n", "missing required columns: lat"),
    ],
)
def test_unusable_files_are_rejected(text, message):
    with pytest.raises(InvalidQueryError) as exc:
        parse_stations_csv(text)
    assert message in str(exc.value)


def test_every_bad_row_is_reported():
    good = _to_csv(PAYLOAD[:1]).splitlines()
    rows = [
        good[0],
        good[1],
        "X1,Name,Brand,Addr,SW1A 1AA,north,-0.1,150,150,2026-10-18T08:00:00Z,,",
        "X2,Name,Brand,Addr,SW1A 1AA,95,-0.1,150,150,2026-10-18T08:00:00Z,,",
        "X3,too,few",
    ]
    with pytest.raises(InvalidQueryError) as exc:
        parse_stations_csv("\n".join(rows))

    message = str(exc.value)
    assert "Row 3: not a number: 'north'" in message
    assert "Row 4: lat" in message
    assert "Row 5: expected 12 fields" in message
    assert "Row 2" not in message


async def _db_state(factory):
    async with factory() as db:
        stations = (await db.execute(select(Station).order_by(Station.station_id))).scalars().all()
        by_pk = {s.id: s.station_id for s in stations}
        latest = (await db.execute(select(StationPriceLatest))).scalars().all()
        history = (await db.execute(select(StationPriceHistory))).scalars().all()
    return (
        [(s.station_id, s.brand, s.name, s.address, s.postcode, s.lat, s.lng, s.amenities, s.opening_hours)
         for s in stations],
        sorted((by_pk[p.station_id], p.petrol_ppl, p.diesel_ppl, p.updated_at_source) for p in latest),
        sorted((by_pk[h.station_id], h.petrol_ppl, h.diesel_ppl, h.updated_at_source) for h in history),
    )


async def test_csv_and_api_ingestion_store_identical_state(session_factory, tmp_path):
    def api(request):
        if request.url.path == "/oauth/token":
            return httpx.Response(200, json={"access_token": "abc", "expires_in": 3600})
        return httpx.Response(200, json={"data": PAYLOAD})

    transport = httpx.MockTransport(api)
    tokens = TokenProvider(
        MemoryCache(),
        token_url="http://ff.test/oauth/token",
        client_id="id",
        client_secret="secret",
        policy=FAST_RETRY,
        transport=transport,
    )
    client = FuelFinderClient("http://ff.test", policy=FAST_RETRY, transport=transport)
    api_result = await IngestionService(session_factory, tokens, client).run_sync()

    other = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'csv.db'}")
    async with other.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    csv_factory = async_sessionmaker(other, expire_on_commit=False, class_=AsyncSession)
    try:
        csv_result = await IngestionService(csv_factory, tokens, client).ingest_stations(
            parse_stations_csv(_to_csv(PAYLOAD))
        )

        for key in ("status", "stationsProcessed", "pricesUpdated", "historyInserted", "errors"):
            assert csv_result[key] == api_result[key]
        assert await _db_state(csv_factory) == await _db_state(session_factory)
    finally:
        await other.dispose()


async def test_replaying_csv_adds_no_history(session_factory, memory_cache):
    svc = IngestionService(session_factory, TokenProvider(memory_cache))
    first = await svc.ingest_stations(parse_stations_csv(_to_csv(PAYLOAD)))
    second = await svc.ingest_stations(parse_stations_csv(_to_csv(PAYLOAD)))

    assert first["historyInserted"] == 2
    assert second["historyInserted"] == 0
    async with session_factory() as db:
        runs = (await db.execute(select(IngestionRun))).scalars().all()
    assert [r.status for r in runs] == ["success", "success"]


async def test_upload_endpoint_ingests(client):
    r = await client.post("/v1/admin/ingest-csv", content=_to_csv(PAYLOAD))
    assert r.status_code == 200, r.text
    assert r.json()["stationsProcessed"] == 2

    detail = await client.get("/v1/stations/A1")
    assert detail.json()["petrolPrice"] == 151


async def test_upload_endpoint_rejects_bad_file(client):
    r = await client.post("/v1/admin/ingest-csv", content="station_id,name\nX,Y\n")
    assert r.status_code == 400
    assert "missing required columns" in r.json()["details"]


async def test_upload_endpoint_reports_partial_run(client, monkeypatch):
    real = ingestion_service.upsert_station

    async def flaky(db, s, now=None):
        if s.stationId == "B2":
            raise RuntimeError("disk full")
        return await real(db, s, now)

    monkeypatch.setattr(ingestion_service, "upsert_station", flaky)
    r = await client.post("/v1/admin/ingest-csv", content=_to_csv(PAYLOAD))

    assert r.status_code == 207
    assert r.json()["errors"] == ["Failed to upsert station B2: disk full"]
