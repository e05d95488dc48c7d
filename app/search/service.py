# app/search/service.py
from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import InvalidQueryError, NotFoundError
from app.core.settings import settings
from app.db.models.master import Station
from app.db.models.prices import StationPriceLatest
from app.geo.distance import haversine_miles
from app.geo.postcodes import PostcodeGeocoder
from app.search.schemas import FUEL_TYPES, StationDetail, StationResult

logger = logging.getLogger(__name__)


def _price_column(fuel_type: str):
    if fuel_type not in FUEL_TYPES:
        raise InvalidQueryError(f"Unknown fuel type {fuel_type!r}")
    return StationPriceLatest.petrol_ppl if fuel_type == "petrol" else StationPriceLatest.diesel_ppl


class SearchService:
    def __init__(self, geocoder: PostcodeGeocoder, *, limit: int | None = None) -> None:
        self.geocoder = geocoder
        self.limit = limit or settings.SEARCH_RESULT_LIMIT

    async def search_by_postcode(
        self, db: AsyncSession, postcode: str, radius_miles: float, fuel_type: str
    ) -> list[StationResult]:
        coords = await self.geocoder.geocode(db, postcode)
        return await self.search_by_coordinates(db, coords.lat, coords.lng, radius_miles, fuel_type)

    async def search_by_coordinates(
        self, db: AsyncSession, lat: float, lng: float, radius_miles: float, fuel_type: str
    ) -> list[StationResult]:
        """
        Cheapest stations within ``radius_miles`` of (lat, lng) that report a
        price for ``fuel_type``; ordered by price, then distance.
        """
        price_col = _price_column(fuel_type)

        # the radius filter runs in Python; only stations lacking a price are dropped in SQL
        q = await db.execute(
            select(Station, StationPriceLatest)
            .join(StationPriceLatest, StationPriceLatest.station_id == Station.id)
            .where(price_col.is_not(None))
        )

        candidates = []
        for station, latest in q.all():
            distance = haversine_miles(lat, lng, station.lat, station.lng)
            if distance > radius_miles:
                continue
            price = latest.petrol_ppl if fuel_type == "petrol" else latest.diesel_ppl
            candidates.append((price, distance, station, latest))

        candidates.sort(key=lambda c: (c[0], c[1], c[2].station_id))

        return [
            StationResult(
                stationId=station.station_id,
                brand=station.brand,
                name=station.name,
                address=station.address,
                postcode=station.postcode,
                pricePerLitre=price,
                distanceMiles=round(distance, 2),
                lastUpdated=latest.updated_at_source,
            )
            for price, distance, station, latest in candidates[: self.limit]
        ]

    async def get_station_detail(self, db: AsyncSession, station_id: str) -> StationDetail:
        q = await db.execute(
            select(Station, StationPriceLatest)
            .outerjoin(StationPriceLatest, StationPriceLatest.station_id == Station.id)
            .where(Station.station_id == station_id)
        )
        row = q.first()
        if not row:
            raise NotFoundError(f"Station {station_id}")

        station, latest = row
        petrol = latest.petrol_ppl if latest else None
        diesel = latest.diesel_ppl if latest else None

        return StationDetail(
            stationId=station.station_id,
            brand=station.brand,
            name=station.name,
            address=station.address,
            postcode=station.postcode,
            lat=station.lat,
            lng=station.lng,
            # petrol first, then diesel, else 0
            pricePerLitre=petrol if petrol is not None else (diesel if diesel is not None else 0),
            distanceMiles=0,
            lastUpdated=latest.updated_at_source if latest else station.updated_at_source,
            petrolPrice=petrol,
            dieselPrice=diesel,
            amenities=station.amenities,
            openingHours=station.opening_hours,
        )
