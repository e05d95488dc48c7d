import logging

import httpx
from pydantic import ValidationError

from app.core.errors import ExternalServiceError, ServiceFormatError
from app.core.http import RetryPolicy, request_with_retry
from app.core.settings import settings
from app.fuelfinder.schemas import FuelFinderStation, StationsPage

logger = logging.getLogger(__name__)

SERVICE = "FuelFinderAPI"


class FuelFinderClient:
    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float | None = None,
        policy: RetryPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base = (base_url or settings.FUEL_FINDER_API_URL).rstrip("/")
        self.timeout = timeout or settings.FUEL_FINDER_TIMEOUT
        self.policy = policy or RetryPolicy.from_settings()
        self._transport = transport

    def _headers(self, token: str) -> dict:
        return {"Authorization": f"Bearer {token}", "Accept": "application/json"}

    async def get_stations_page(self, token: str, cursor: str | None = None) -> StationsPage:
        params = {"cursor": cursor} if cursor else None
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            r = await request_with_retry(
                client,
                "GET",
                f"{self.base}/v1/stations",
                policy=self.policy,
                service=SERVICE,
                params=params,
                headers=self._headers(token),
            )

        if r.status_code != 200:
            raise ExternalServiceError(SERVICE, f"request failed: {r.status_code} {r.text[:200]}", r.status_code)

        try:
            return StationsPage.model_validate(r.json())
        except ValueError as exc:
            # covers both JSON decoding and pydantic.ValidationError
            details = exc.errors() if isinstance(exc, ValidationError) else None
            raise ServiceFormatError(SERVICE, str(exc), details) from exc

    async def get_all_stations(self, token: str) -> list[FuelFinderStation]:
        """Follow the pagination cursor until the provider reports no more pages."""
        stations: list[FuelFinderStation] = []
        cursor: str | None = None
        pages = 0
        while True:
            page = await self.get_stations_page(token, cursor)
            pages += 1
            stations.extend(page.data)
            if page.pagination is None or not page.pagination.hasMore:
                break
            if not page.pagination.cursor:
                raise ServiceFormatError(SERVICE, "hasMore is true but no cursor was returned")
            cursor = page.pagination.cursor
        logger.info("Fetched %d stations over %d page(s)", len(stations), pages)
        return stations
