# app/notifications/rules.py
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, ValidationError, model_validator
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import InvalidQueryError
from app.db.base import now_utc
from app.db.models_rules import AlertRule
from app.geo.postcodes import normalize_postcode
from app.search.schemas import FuelType


class AlertRuleIn(BaseModel):
    centerPostcode: str | None = None
    lat: float | None = Field(default=None, ge=-90, le=90)
    lng: float | None = Field(default=None, ge=-180, le=180)
    radiusMiles: int = Field(ge=1, le=25)
    fuelType: FuelType
    thresholdPpl: int = Field(default=2, ge=1, le=100)
    enabled: bool = True

    @model_validator(mode="after")
    def _exactly_one_origin(self) -> "AlertRuleIn":
        has_postcode = bool(self.centerPostcode and self.centerPostcode.strip())
        has_coords = self.lat is not None and self.lng is not None
        if (self.lat is None) != (self.lng is None):
            raise ValueError("lat and lng must be given together")
        if has_postcode == has_coords:
            raise ValueError("Exactly one of centerPostcode or lat/lng must be provided")
        return self


async def create_alert_rule(db: AsyncSession, user_id: str, params: dict | AlertRuleIn) -> AlertRule:
    if not isinstance(params, AlertRuleIn):
        try:
            params = AlertRuleIn.model_validate(params)
        except ValidationError as exc:
            raise InvalidQueryError(str(exc)) from exc

    rule = AlertRule(
        user_id=user_id,
        center_postcode=normalize_postcode(params.centerPostcode) if params.centerPostcode else None,
        lat=params.lat,
        lng=params.lng,
        radius_miles=params.radiusMiles,
        fuel_type=params.fuelType,
        trigger_type="price_drop",
        threshold_ppl=params.thresholdPpl,
        enabled=params.enabled,
    )
    db.add(rule)
    await db.commit()
    return rule


async def list_enabled_rules(db: AsyncSession) -> list[AlertRule]:
    # stable order so the per-user daily cap always lands on the same rules
    q = await db.execute(
        select(AlertRule)
        .where(AlertRule.enabled == True)  # noqa
        .order_by(AlertRule.user_id, AlertRule.created_at, AlertRule.id)
    )
    return list(q.scalars().all())


async def count_recent_triggers(db: AsyncSession, user_id: str, since: datetime) -> int:
    q = await db.execute(
        select(func.count(AlertRule.id)).where(
            AlertRule.user_id == user_id,
            AlertRule.last_triggered_at.is_not(None),
            AlertRule.last_triggered_at >= since,
        )
    )
    return int(q.scalar_one())


async def mark_triggered(db: AsyncSession, rule_id: str, price: int, now: datetime | None = None) -> None:
    """Record a delivered alert. Call only after the notification went out."""
    await db.execute(
        update(AlertRule)
        .where(AlertRule.id == rule_id)
        .values(last_triggered_at=now or now_utc(), last_notified_price=price)
    )
    await db.commit()


async def record_baseline(db: AsyncSession, rule_id: str, price: int) -> None:
    """Seed the comparison price without starting a cooldown."""
    await db.execute(
        update(AlertRule)
        .where(AlertRule.id == rule_id, AlertRule.last_notified_price.is_(None))
        .values(last_notified_price=price)
    )
    await db.commit()
