# tests/test_oauth.py
from urllib.parse import parse_qs

import httpx
import pytest

from app.core.errors import ConfigurationError, ExternalServiceError
from app.fuelfinder.oauth import TOKEN_CACHE_KEY, TokenProvider
from app.core.http import RetryPolicy

FAST_RETRY = RetryPolicy(max_attempts=3, base_delay=0)

pytestmark = pytest.mark.anyio


class FakeClock:
    def __init__(self):
        self.now = 1_800_000_000.0

    def __call__(self):
        return self.now


class TokenEndpoint:
    def __init__(self, responses=None):
        self.requests: list[httpx.Request] = []
        self.responses = list(responses or [])
        self.issued = 0

    def __call__(self, request):
        self.requests.append(request)
        if self.responses:
            status = self.responses.pop(0)
            if status != 200:
                return httpx.Response(status, text="nope")
        self.issued += 1
        return httpx.Response(200, json={"access_token": f"tok-{self.issued}", "expires_in": 3600, "token_type": "Bearer"})


def _provider(cache, endpoint, clock, **kw):
    return TokenProvider(
        cache,
        token_url="http://auth.test/oauth/token",
        client_id=kw.pop("client_id", "id"),
        client_secret=kw.pop("client_secret", "secret"),
        buffer_seconds=300,
        policy=FAST_RETRY,
        transport=httpx.MockTransport(endpoint),
        clock=clock,
    )


async def test_token_is_cached_until_buffered_expiry(memory_cache):
    clock, endpoint = FakeClock(), TokenEndpoint()
    tokens = _provider(memory_cache, endpoint, clock)

    assert await tokens.get_token() == "tok-1"
    clock.now += 3000  # still inside 3600 - 300
    assert await tokens.get_token() == "tok-1"
    assert len(endpoint.requests) == 1

    clock.now += 300  # past expiry minus buffer
    assert await tokens.get_token() == "tok-2"
    assert len(endpoint.requests) == 2


async def test_cached_value_holds_effective_deadline(memory_cache):
    clock, endpoint = FakeClock(), TokenEndpoint()
    start = clock.now
    await _provider(memory_cache, endpoint, clock).get_token()

    cached = await memory_cache.get(TOKEN_CACHE_KEY)
    assert cached["access_token"] == "tok-1"
    assert cached["expires_at"] == start + 3600 - 300


async def test_sends_client_credentials_form(memory_cache):
    endpoint = TokenEndpoint()
    await _provider(memory_cache, endpoint, FakeClock()).get_token()

    body = parse_qs(endpoint.requests[0].content.decode())
    assert body["grant_type"] == ["client_credentials"]
    assert body["client_id"] == ["id"]
    assert body["client_secret"] == ["secret"]
    assert body["scope"] == ["fuelfinder.read"]


async def test_retries_on_429_and_5xx(memory_cache):
    endpoint = TokenEndpoint([429, 502])
    assert await _provider(memory_cache, endpoint, FakeClock()).get_token() == "tok-1"
    assert len(endpoint.requests) == 3


async def test_client_error_fails_immediately(memory_cache):
    endpoint = TokenEndpoint([401])
    with pytest.raises(ExternalServiceError) as ei:
        await _provider(memory_cache, endpoint, FakeClock()).get_token()
    assert ei.value.status_code == 401
    assert len(endpoint.requests) == 1


async def test_missing_credentials_never_call_upstream(memory_cache):
    endpoint = TokenEndpoint()
    with pytest.raises(ConfigurationError):
        await _provider(memory_cache, endpoint, FakeClock(), client_secret="").get_token()
    assert endpoint.requests == []


async def test_clear_forces_refresh(memory_cache):
    endpoint = TokenEndpoint()
    tokens = _provider(memory_cache, endpoint, FakeClock())
    await tokens.get_token()
    await tokens.clear()
    assert await tokens.get_token() == "tok-2"
