# app/geo/postcodes.py
from __future__ import annotations

import logging
import math
import re
import uuid
from dataclasses import dataclass
from urllib.parse import quote

import httpx
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ExternalServiceError, InvalidResponseError, NotFoundError
from app.core.http import RetryPolicy, request_with_retry
from app.core.settings import settings
from app.db.base import now_utc
from app.db.models.geocode import PostcodeGeoCache

logger = logging.getLogger(__name__)

SERVICE = "PostcodesIO"
_WS = re.compile(r"\s+")


@dataclass(frozen=True)
class Coordinates:
    lat: float
    lng: float


def normalize_postcode(raw: str) -> str:
    """
    Canonical UK postcode: uppercase, no inner whitespace except one space
    before the three-character inward code.

    >>> normalize_postcode("  sw1a  1aa ")
    'SW1A 1AA'
    """
    cleaned = _WS.sub("", raw).upper()
    if len(cleaned) < 5:
        # too short to split into outward + inward; keep as-is
        return cleaned
    return f"{cleaned[:-3]} {cleaned[-3:]}"


def _coord(value, lo: float, hi: float) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    value = float(value)
    if not math.isfinite(value) or not lo <= value <= hi:
        return None
    return value


class PostcodeGeocoder:
    """Postcode -> coordinates, backed by the postcode_geo_cache table."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float | None = None,
        policy: RetryPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base = (base_url or settings.POSTCODES_API_URL).rstrip("/")
        self.timeout = timeout or settings.POSTCODES_TIMEOUT
        self.policy = policy or RetryPolicy.from_settings()
        self._transport = transport

    async def geocode(self, db: AsyncSession, raw_postcode: str) -> Coordinates:
        return await self.resolve(db, normalize_postcode(raw_postcode))

    async def resolve(self, db: AsyncSession, canonical: str) -> Coordinates:
        cached = await self.get_cached(db, canonical)
        if cached:
            return cached

        coords = await self.fetch(canonical)
        await self.store(db, canonical, coords)
        return coords

    async def get_cached(self, db: AsyncSession, canonical: str) -> Coordinates | None:
        q = await db.execute(select(PostcodeGeoCache).where(PostcodeGeoCache.postcode_normalized == canonical))
        row = q.scalar_one_or_none()
        if not row:
            return None

        coords = Coordinates(lat=row.lat, lng=row.lng)
        row.last_used_at = now_utc()
        await db.commit()
        return coords

    async def store(self, db: AsyncSession, canonical: str, coords: Coordinates) -> None:
        """
        Upsert the cache row. Never rolls back ``db``: the caller may hold
        loaded objects (e.g. the alert rules being evaluated).
        """
        now = now_utc()
        dialect = db.get_bind().dialect.name
        if dialect in ("postgresql", "sqlite"):
            if dialect == "postgresql":
                from sqlalchemy.dialects.postgresql import insert
            else:
                from sqlalchemy.dialects.sqlite import insert
            stmt = insert(PostcodeGeoCache).values(
                id=str(uuid.uuid4()),
                postcode_normalized=canonical,
                lat=coords.lat,
                lng=coords.lng,
                created_at=now,
                last_used_at=now,
            )
            await db.execute(
                stmt.on_conflict_do_update(
                    index_elements=["postcode_normalized"],
                    set_={"lat": coords.lat, "lng": coords.lng, "last_used_at": now},
                )
            )
            await db.commit()
            return

        # other dialects: a savepoint absorbs a concurrent insert of the same postcode
        try:
            async with db.begin_nested():
                q = await db.execute(
                    select(PostcodeGeoCache).where(PostcodeGeoCache.postcode_normalized == canonical)
                )
                row = q.scalar_one_or_none()
                if row:
                    row.lat, row.lng, row.last_used_at = coords.lat, coords.lng, now
                else:
                    db.add(
                        PostcodeGeoCache(
                            postcode_normalized=canonical, lat=coords.lat, lng=coords.lng, last_used_at=now
                        )
                    )
        except IntegrityError:
            logger.debug("Postcode %s cached concurrently", canonical)
        await db.commit()

    async def fetch(self, canonical: str) -> Coordinates:
        url = f"{self.base}/postcodes/{quote(canonical)}"
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            r = await request_with_retry(client, "GET", url, policy=self.policy, service=SERVICE)

        if r.status_code == 404:
            raise NotFoundError(f"Postcode {canonical}")
        if r.status_code != 200:
            raise ExternalServiceError(SERVICE, f"lookup failed: {r.status_code}", r.status_code)

        try:
            result = r.json().get("result")
        except (ValueError, AttributeError) as exc:
            raise InvalidResponseError(SERVICE, f"unreadable body for {canonical}") from exc
        if not isinstance(result, dict):
            raise InvalidResponseError(SERVICE, f"no result for {canonical}")

        lat = _coord(result.get("latitude"), -90, 90)
        lng = _coord(result.get("longitude"), -180, 180)
        if lat is None or lng is None:
            raise InvalidResponseError(SERVICE, f"no usable coordinates for {canonical}")

        logger.debug("Geocoded %s via %s", canonical, SERVICE)
        return Coordinates(lat=lat, lng=lng)
