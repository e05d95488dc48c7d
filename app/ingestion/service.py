import asyncio
import logging
import uuid
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.settings import settings
from app.db.base import now_utc
from app.db.models.master import Station
from app.db.models.prices import StationPriceLatest, StationPriceHistory
from app.db.models.runs import IngestionRun
from app.fuelfinder.client import FuelFinderClient
from app.fuelfinder.oauth import TokenProvider
from app.fuelfinder.schemas import FuelFinderStation

logger = logging.getLogger(__name__)


def _insert_ignoring_duplicates(db: AsyncSession, values: dict):
    """INSERT into price history that is a no-op when the (station, timestamp) key exists."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        return None
    return (
        insert(StationPriceHistory)
        .values(**values)
        .on_conflict_do_nothing(index_elements=["station_id", "updated_at_source"])
    )


async def upsert_station(db: AsyncSession, s: FuelFinderStation, now: datetime | None = None) -> dict:
    """
    Station row, latest snapshot and history entry for one provider record.
    The caller owns the transaction so the three writes land together.
    """
    now = now or now_utc()
    petrol, diesel = s.petrol_ppl, s.diesel_ppl

    # STATION
    q = await db.execute(select(Station).where(Station.station_id == s.stationId))
    obj = q.scalar_one_or_none()
    if obj:
        obj.brand = s.brand
        obj.name = s.name
        obj.address = s.address
        obj.postcode = s.postcode
        obj.lat = s.lat
        obj.lng = s.lng
        obj.amenities = s.amenities
        obj.opening_hours = s.openingHours
        obj.updated_at_source = max(obj.updated_at_source, s.updatedAt)
    else:
        obj = Station(
            id=str(uuid.uuid4()),
            station_id=s.stationId,
            brand=s.brand,
            name=s.name,
            address=s.address,
            postcode=s.postcode,
            lat=s.lat,
            lng=s.lng,
            amenities=s.amenities,
            opening_hours=s.openingHours,
            updated_at_source=s.updatedAt,
        )
        db.add(obj)
        await db.flush()

    # LATEST: only a newer or equal source timestamp replaces the snapshot
    q = await db.execute(select(StationPriceLatest).where(StationPriceLatest.station_id == obj.id))
    latest = q.scalar_one_or_none()
    price_written = False
    if latest is None:
        db.add(
            StationPriceLatest(
                station_id=obj.id,
                petrol_ppl=petrol,
                diesel_ppl=diesel,
                updated_at_source=s.updatedAt,
                fetched_at=now,
            )
        )
        price_written = True
    elif s.updatedAt >= latest.updated_at_source:
        latest.petrol_ppl = petrol
        latest.diesel_ppl = diesel
        latest.updated_at_source = s.updatedAt
        latest.fetched_at = now
        price_written = True

    # HISTORY: at most one row per (station, source timestamp)
    values = {
        "id": str(uuid.uuid4()),
        "station_id": obj.id,
        "petrol_ppl": petrol,
        "diesel_ppl": diesel,
        "updated_at_source": s.updatedAt,
        "fetched_at": now,
    }
    stmt = _insert_ignoring_duplicates(db, values)
    if stmt is not None:
        res = await db.execute(stmt)
        history_inserted = res.rowcount == 1
    else:
        q = await db.execute(
            select(StationPriceHistory.id).where(
                StationPriceHistory.station_id == obj.id,
                StationPriceHistory.updated_at_source == s.updatedAt,
            )
        )
        history_inserted = q.first() is None
        if history_inserted:
            db.add(StationPriceHistory(**values))

    await db.flush()
    return {"price_written": price_written, "history_inserted": history_inserted}


class IngestionService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        tokens: TokenProvider,
        client: FuelFinderClient | None = None,
        *,
        concurrency: int | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.tokens = tokens
        self.client = client or FuelFinderClient()
        self.concurrency = max(1, concurrency or settings.INGESTION_CONCURRENCY)

    async def run_sync(self) -> dict:
        """
        Pull every station from Fuel Finder and upsert it.

        status: success (no errors), partial (some stations stored despite
        errors, or the provider returned nothing), failed (nothing stored, or
        an error before any station was processed). Always leaves an audit row.
        """
        return await self._run(self._fetch_from_api, "Fuel sync")

    async def ingest_stations(self, stations: list[FuelFinderStation]) -> dict:
        """Store records that arrived some other way (CSV upload) with run_sync's accounting."""

        async def _given() -> list[FuelFinderStation]:
            return stations

        return await self._run(_given, "CSV ingestion")

    async def _fetch_from_api(self) -> list[FuelFinderStation]:
        token = await self.tokens.get_token()
        return await self.client.get_all_stations(token)

    async def _run(self, load, label: str) -> dict:
        started_at = now_utc()
        status = "success"
        processed = 0
        prices_updated = 0
        history_inserted = 0
        errors: list[str] = []

        try:
            stations = await load()

            if not stations:
                logger.warning("%s: no stations returned", label)
                status = "partial"
                errors.append("No stations returned from API")
            else:
                outcomes = await self._upsert_all(stations)
                for station, outcome in zip(stations, outcomes):
                    if isinstance(outcome, Exception):
                        errors.append(f"Failed to upsert station {station.stationId}: {outcome}")
                        continue
                    processed += 1
                    prices_updated += int(outcome["price_written"])
                    history_inserted += int(outcome["history_inserted"])

                if errors:
                    status = "partial" if processed > 0 else "failed"
        except Exception as exc:
            logger.exception("%s failed", label)
            errors.append(f"Ingestion failed: {exc}")
            status = "failed"

        result = {
            "status": status,
            "stationsProcessed": processed,
            "pricesUpdated": prices_updated,
            "historyInserted": history_inserted,
            "errors": errors,
            "startedAt": started_at,
            "finishedAt": now_utc(),
        }
        logger.info(
            "%s %s: %d stations, %d prices, %d history rows, %d errors",
            label, status, processed, prices_updated, history_inserted, len(errors),
        )

        try:
            await self._record_run(result)
        except Exception:
            # the run's own outcome is returned regardless
            logger.exception("Failed to record ingestion run")

        return result

    async def _upsert_all(self, stations: list[FuelFinderStation]) -> list:
        sem = asyncio.Semaphore(self.concurrency)
        now = now_utc()

        async def one(s: FuelFinderStation):
            async with sem:
                try:
                    async with self.session_factory() as db:
                        async with db.begin():
                            return await upsert_station(db, s, now)
                except Exception as exc:
                    logger.error("Error upserting station %s: %s", s.stationId, exc)
                    return exc

        return await asyncio.gather(*(one(s) for s in stations))

    async def _record_run(self, result: dict) -> None:
        async with self.session_factory() as db:
            db.add(
                IngestionRun(
                    started_at=result["startedAt"],
                    finished_at=result["finishedAt"],
                    status=result["status"],
                    counts={
                        "stationsProcessed": result["stationsProcessed"],
                        "pricesUpdated": result["pricesUpdated"],
                        "historyInserted": result["historyInserted"],
                        "errorsCount": len(result["errors"]),
                    },
                    error_summary={"errors": result["errors"]} if result["errors"] else None,
                )
            )
            await db.commit()
