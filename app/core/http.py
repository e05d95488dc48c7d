# app/core/http.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

import httpx

from app.core.errors import ExternalServiceError
from app.core.settings import settings

logger = logging.getLogger(__name__)


def is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or 500 <= status_code < 600


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 4
    base_delay: float = 1.0  # seconds, doubled on every attempt
    retry_on: Callable[[int], bool] = is_retryable_status

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(max_attempts=settings.RETRY_MAX_ATTEMPTS, base_delay=settings.RETRY_BASE_DELAY)

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * (2 ** attempt)


async def request_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    policy: RetryPolicy,
    service: str,
    **kwargs,
) -> httpx.Response:
    """
    Send a request, retrying transport errors (timeouts included) and any
    status accepted by ``policy.retry_on`` with exponential backoff.

    Every other response, successful or not, is handed back to the caller.
    Raises ExternalServiceError once the attempts are exhausted.
    """
    attempts = max(1, policy.max_attempts)

    for attempt in range(attempts):
        last = attempt == attempts - 1
        try:
            r = await client.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            kind = "timeout" if isinstance(exc, httpx.TimeoutException) else "transport error"
            if last:
                raise ExternalServiceError(service, f"{kind} after {attempts} attempts: {exc}") from exc
            delay = policy.delay_for(attempt)
            logger.warning(
                "%s %s (attempt %d/%d), retrying in %.2fs", service, kind, attempt + 1, attempts, delay
            )
            await asyncio.sleep(delay)
            continue

        if policy.retry_on(r.status_code):
            if last:
                raise ExternalServiceError(
                    service, f"returned {r.status_code} after {attempts} attempts", r.status_code
                )
            delay = policy.delay_for(attempt)
            logger.warning(
                "%s returned %d (attempt %d/%d), retrying in %.2fs",
                service, r.status_code, attempt + 1, attempts, delay,
            )
            await asyncio.sleep(delay)
            continue

        return r

    # unreachable: the loop either returns or raises on its last attempt
    raise ExternalServiceError(service, "request failed after retries")
