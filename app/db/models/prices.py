from datetime import datetime
import uuid

from sqlalchemy import Integer, DateTime, String, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, now_utc

class StationPriceLatest(Base):
    """
    Latest-only snapshot, one row per station.
    Prices are whole pence per litre; either fuel may be missing.
    """
    __tablename__ = "station_prices_latest"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    station_id: Mapped[str] = mapped_column(String(36), ForeignKey("stations.id"), unique=True, nullable=False)

    petrol_ppl: Mapped[int | None] = mapped_column(Integer, nullable=True)
    diesel_ppl: Mapped[int | None] = mapped_column(Integer, nullable=True)

    updated_at_source: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    fetched_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc, nullable=False)

    station = relationship("Station", back_populates="latest_price")


class StationPriceHistory(Base):
    """
    Append-only. One row per (station, source timestamp), so replaying the
    same provider snapshot never adds a row.
    """
    __tablename__ = "station_prices_history"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    station_id: Mapped[str] = mapped_column(String(36), ForeignKey("stations.id"), index=True, nullable=False)

    petrol_ppl: Mapped[int | None] = mapped_column(Integer, nullable=True)
    diesel_ppl: Mapped[int | None] = mapped_column(Integer, nullable=True)

    updated_at_source: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    fetched_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc, nullable=False)

    __table_args__ = (UniqueConstraint("station_id", "updated_at_source", name="uq_history_station_source_ts"),)
