from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db
from app.notifications.push_tokens import register_push_token

router = APIRouter(prefix="/push", tags=["push"])


class RegisterIn(BaseModel):
    userId: str
    expoPushToken: str
    platform: str


@router.post("/register")
async def register(payload: RegisterIn, db: AsyncSession = Depends(get_db)):
    await register_push_token(db, payload.userId, payload.expoPushToken, payload.platform)
    return {"ok": True}
