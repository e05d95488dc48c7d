# app/fuelfinder/oauth.py
from __future__ import annotations

import logging
import time

import httpx

from app.cache.kv import KeyValueCache
from app.core.errors import ConfigurationError, ExternalServiceError, ServiceFormatError
from app.core.http import RetryPolicy, request_with_retry
from app.core.settings import settings

logger = logging.getLogger(__name__)

TOKEN_CACHE_KEY = "fuel_finder_oauth_token"
SERVICE = "FuelFinderOAuth"


class TokenProvider:
    """
    Client-credentials bearer token for the Fuel Finder API, cached in an
    injected KeyValueCache.

    The cached value is ``{"access_token", "expires_at"}`` where ``expires_at``
    is a unix timestamp already reduced by the refresh buffer. Concurrent
    refreshes are harmless: the last writer wins.
    """

    def __init__(
        self,
        cache: KeyValueCache,
        *,
        token_url: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        scope: str | None = None,
        buffer_seconds: int | None = None,
        timeout: float | None = None,
        policy: RetryPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock=time.time,
    ) -> None:
        self.cache = cache
        self.token_url = token_url or settings.token_url
        self.client_id = settings.FUEL_FINDER_CLIENT_ID if client_id is None else client_id
        self.client_secret = settings.FUEL_FINDER_CLIENT_SECRET if client_secret is None else client_secret
        self.scope = scope or settings.FUEL_FINDER_SCOPE
        self.buffer_seconds = settings.TOKEN_REFRESH_BUFFER_SECONDS if buffer_seconds is None else buffer_seconds
        self.timeout = timeout or settings.TOKEN_TIMEOUT
        self.policy = policy or RetryPolicy.from_settings()
        self._transport = transport
        self._clock = clock

    async def get_token(self) -> str:
        cached = await self.cache.get(TOKEN_CACHE_KEY)
        if cached and self._clock() < float(cached.get("expires_at", 0)):
            return cached["access_token"]

        token, expires_at = await self._request_new_token()
        ttl = expires_at - self._clock()
        if ttl > 0:
            await self.cache.put(TOKEN_CACHE_KEY, {"access_token": token, "expires_at": expires_at}, ttl=ttl)
        return token

    async def clear(self) -> None:
        await self.cache.delete(TOKEN_CACHE_KEY)

    async def _request_new_token(self) -> tuple[str, float]:
        if not self.client_id or not self.client_secret:
            raise ConfigurationError("Fuel Finder API credentials not configured")

        form = {
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "scope": self.scope,
        }

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            r = await request_with_retry(
                client, "POST", self.token_url, policy=self.policy, service=SERVICE, data=form
            )

        if r.status_code != 200:
            raise ExternalServiceError(SERVICE, f"token request rejected: {r.status_code} {r.text[:200]}", r.status_code)

        try:
            body = r.json()
            token = str(body["access_token"])
            expires_in = float(body["expires_in"])
        except (ValueError, KeyError, TypeError) as exc:
            raise ServiceFormatError(SERVICE, "missing access_token/expires_in") from exc

        expires_at = self._clock() + expires_in - self.buffer_seconds
        logger.info("Obtained Fuel Finder token valid for %ss", int(expires_in))
        return token, expires_at
