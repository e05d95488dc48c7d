from datetime import datetime
import uuid

from sqlalchemy import String, DateTime, Float
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, now_utc

class PostcodeGeoCache(Base):
    __tablename__ = "postcode_geo_cache"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    postcode_normalized: Mapped[str] = mapped_column(String(16), unique=True, index=True, nullable=False)
    lat: Mapped[float] = mapped_column(Float, nullable=False)
    lng: Mapped[float] = mapped_column(Float, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc, nullable=False)
    # touched on every hit; never used to expire an entry
    last_used_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc, nullable=False)
