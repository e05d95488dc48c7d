# app/services/push_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Protocol

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.errors import ExternalServiceError, NotFoundError
from app.core.http import RetryPolicy, request_with_retry
from app.core.settings import settings
from app.db.models_notifications import PushToken

logger = logging.getLogger(__name__)

SERVICE = "ExpoPush"
CHUNK_SIZE = 100  # Expo accepts at most 100 messages per request


@dataclass
class AlertNotification:
    title: str
    body: str
    data: Dict[str, Any] = field(default_factory=dict)


class NotificationDispatcher(Protocol):
    async def send(self, user_id: str, notification: AlertNotification) -> None: ...


def is_expo_token(t: str) -> bool:
    return isinstance(t, str) and (t.startswith("ExponentPushToken[") or t.startswith("ExpoPushToken["))


def _build_expo_message(token: str, notification: AlertNotification) -> Dict[str, Any]:
    return {
        "to": token,
        "sound": "default",
        "title": notification.title,
        "body": notification.body,
        "data": notification.data,
        "priority": "high",
        "ttl": 60 * 30,
        # Android only; must match the channel the app registers
        "channelId": "alerts",
    }


class ExpoPushDispatcher:
    """
    Delivers alert notifications to every Expo push token registered for the user.

    Raises when the user has no tokens or Expo rejects the request, so the
    caller leaves the rule's cooldown untouched.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        url: str | None = None,
        timeout: float | None = None,
        policy: RetryPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.url = url or settings.EXPO_PUSH_URL
        self.timeout = timeout or settings.EXPO_PUSH_TIMEOUT
        self.policy = policy or RetryPolicy.from_settings()
        self._transport = transport

    async def _tokens_for(self, user_id: str) -> List[str]:
        async with self.session_factory() as db:
            res = await db.execute(select(PushToken.expo_push_token).where(PushToken.user_id == user_id))
            return [t for t in res.scalars().all() if is_expo_token(t)]

    async def send(self, user_id: str, notification: AlertNotification) -> None:
        tokens = await self._tokens_for(user_id)
        if not tokens:
            raise NotFoundError(f"Push tokens for user {user_id}")

        messages = [_build_expo_message(t, notification) for t in tokens]

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for i in range(0, len(messages), CHUNK_SIZE):
                chunk = messages[i : i + CHUNK_SIZE]
                r = await request_with_retry(
                    client, "POST", self.url, policy=self.policy, service=SERVICE, json=chunk
                )
                if r.status_code != 200:
                    raise ExternalServiceError(SERVICE, f"push rejected: {r.status_code}", r.status_code)

                for t in r.json().get("data", []):
                    if t.get("status") == "error":
                        # e.g. DeviceNotRegistered; the other devices still got the alert
                        logger.warning("Expo ticket error for user %s: %s", user_id, t.get("message"))

        logger.info("Sent alert to %d device(s) for user %s", len(tokens), user_id)
