# app/notifications/push_tokens.py
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ValidationError, field_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import InvalidQueryError, NotFoundError
from app.db.models_notifications import PushToken
from app.db.models_user import User
from app.services.push_service import is_expo_token


class PushTokenIn(BaseModel):
    expoPushToken: str
    platform: Literal["ios", "android"]

    @field_validator("expoPushToken")
    @classmethod
    def _expo_format(cls, v: str) -> str:
        v = v.strip()
        if not is_expo_token(v):
            raise ValueError("not an Expo push token")
        return v


async def register_push_token(db: AsyncSession, user_id: str, expo_push_token: str, platform: str) -> PushToken:
    """
    Upsert keyed by token: a device that signs in as another user moves over
    to that user (and its platform is refreshed).
    """
    try:
        params = PushTokenIn(expoPushToken=expo_push_token, platform=platform)
    except ValidationError as exc:
        raise InvalidQueryError(str(exc)) from exc

    if await db.get(User, user_id) is None:
        raise NotFoundError(f"User {user_id}")

    res = await db.execute(select(PushToken).where(PushToken.expo_push_token == params.expoPushToken))
    existing = res.scalar_one_or_none()

    if existing:
        existing.user_id = user_id
        existing.platform = params.platform
        token = existing
    else:
        token = PushToken(user_id=user_id, expo_push_token=params.expoPushToken, platform=params.platform)
        db.add(token)

    await db.commit()
    return token
