import uuid
from datetime import datetime
from sqlalchemy import String, DateTime, Boolean, Integer, Float, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, now_utc
from app.core.errors import RuleConfigurationError

class AlertRule(Base):
    __tablename__ = "alert_rules"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True, nullable=False)

    # exactly one origin: a postcode OR a lat/lng pair
    center_postcode: Mapped[str | None] = mapped_column(String(16), nullable=True)
    lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    lng: Mapped[float | None] = mapped_column(Float, nullable=True)

    radius_miles: Mapped[int] = mapped_column(Integer, nullable=False)
    fuel_type: Mapped[str] = mapped_column(String(10), nullable=False)       # petrol / diesel
    trigger_type: Mapped[str] = mapped_column(String(20), default="price_drop", nullable=False)
    threshold_ppl: Mapped[int] = mapped_column(Integer, default=2, nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    last_triggered_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_notified_price: Mapped[int | None] = mapped_column(Integer, nullable=True)  # None = no baseline yet

    created_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc, onupdate=now_utc, nullable=False)

    def origin(self) -> tuple[str | None, float | None, float | None]:
        """Return (postcode, lat, lng) with exactly one form populated."""
        has_postcode = bool(self.center_postcode)
        has_coords = self.lat is not None and self.lng is not None
        if has_postcode == has_coords:
            raise RuleConfigurationError(
                f"Alert rule {self.id} must have either a postcode or lat/lng, not both or neither"
            )
        if has_postcode:
            return self.center_postcode, None, None
        return None, self.lat, self.lng
