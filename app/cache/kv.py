# app/cache/kv.py
from __future__ import annotations

import time
from datetime import timedelta
from typing import Any, Callable, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.base import now_utc
from app.db.models.cache import KeyValueEntry


class KeyValueCache(Protocol):
    async def get(self, key: str) -> Any | None: ...

    async def put(self, key: str, value: Any, ttl: float | None = None) -> None: ...

    async def delete(self, key: str) -> None: ...


class MemoryCache:
    """
    Process-local cache. ``ttl`` is in seconds; ``None`` keeps the entry until
    it is deleted. ``clock`` returns monotonic seconds and exists for tests.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._items: dict[str, tuple[Any, float | None]] = {}

    async def get(self, key: str) -> Any | None:
        item = self._items.get(key)
        if item is None:
            return None
        value, deadline = item
        if deadline is not None and self._clock() >= deadline:
            self._items.pop(key, None)
            return None
        return value

    async def put(self, key: str, value: Any, ttl: float | None = None) -> None:
        deadline = None if ttl is None else self._clock() + ttl
        self._items[key] = (value, deadline)

    async def delete(self, key: str) -> None:
        self._items.pop(key, None)


class SqlKeyValueCache:
    """Durable cache stored in the ``kv_cache`` table. Values must be JSON-serialisable."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, key: str) -> Any | None:
        async with self._session_factory() as db:
            row = await db.get(KeyValueEntry, key)
            if row is None:
                return None
            if row.expires_at is not None and row.expires_at <= now_utc():
                return None
            return row.value

    async def put(self, key: str, value: Any, ttl: float | None = None) -> None:
        expires_at = None if ttl is None else now_utc() + timedelta(seconds=ttl)
        async with self._session_factory() as db:
            row = await db.get(KeyValueEntry, key)
            if row:
                row.value = value
                row.expires_at = expires_at
            else:
                db.add(KeyValueEntry(key=key, value=value, expires_at=expires_at))
            await db.commit()

    async def delete(self, key: str) -> None:
        async with self._session_factory() as db:
            row = await db.get(KeyValueEntry, key)
            if row:
                await db.delete(row)
                await db.commit()
