# app/notifications/evaluation.py
"""
Per-rule alert decisions.

Not triggering is a normal outcome, so every decision is returned as an
AlertEvaluation carrying a reason rather than raised.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import FuelAppError, RuleConfigurationError
from app.core.settings import settings
from app.db.base import now_utc
from app.db.models_rules import AlertRule
from app.notifications.rules import count_recent_triggers, list_enabled_rules
from app.search.schemas import StationResult
from app.search.service import SearchService

logger = logging.getLogger(__name__)

DISABLED = "disabled"
COOLDOWN = "cooldown"
INVALID_RULE = "invalid rule configuration"
NO_STATIONS = "no stations in radius"
NO_BASELINE = "no baseline"
BELOW_THRESHOLD = "below threshold"
DAILY_LIMIT = "daily limit reached"
SEARCH_FAILED = "search failed"

CAP_WINDOW = timedelta(hours=24)


@dataclass
class AlertEvaluation:
    should_trigger: bool
    reason: str | None = None
    current_price: int | None = None
    price_drop: int | None = None
    station: StationResult | None = None
    error: str | None = None


@dataclass
class RuleEvaluation:
    rule: AlertRule
    evaluation: AlertEvaluation


class AlertEvaluator:
    def __init__(
        self,
        search: SearchService,
        *,
        cooldown: timedelta | None = None,
        daily_cap: int | None = None,
    ) -> None:
        self.search = search
        self.cooldown = cooldown or timedelta(hours=settings.ALERT_COOLDOWN_HOURS)
        self.daily_cap = settings.ALERT_DAILY_CAP if daily_cap is None else daily_cap

    async def evaluate_rule(self, db: AsyncSession, rule: AlertRule, now: datetime | None = None) -> AlertEvaluation:
        now = now or now_utc()

        if not rule.enabled:
            return AlertEvaluation(False, reason=DISABLED)

        if rule.last_triggered_at is not None and now - rule.last_triggered_at < self.cooldown:
            return AlertEvaluation(False, reason=COOLDOWN)

        try:
            postcode, lat, lng = rule.origin()
        except RuleConfigurationError as exc:
            return AlertEvaluation(False, reason=INVALID_RULE, error=str(exc))

        if postcode:
            results = await self.search.search_by_postcode(db, postcode, rule.radius_miles, rule.fuel_type)
        else:
            results = await self.search.search_by_coordinates(db, lat, lng, rule.radius_miles, rule.fuel_type)

        if not results:
            return AlertEvaluation(False, reason=NO_STATIONS)

        best = results[0]
        current = best.pricePerLitre

        if rule.last_notified_price is None:
            return AlertEvaluation(False, reason=NO_BASELINE, current_price=current, station=best)

        drop = rule.last_notified_price - current
        if drop >= rule.threshold_ppl:
            return AlertEvaluation(True, current_price=current, price_drop=drop, station=best)

        return AlertEvaluation(False, reason=BELOW_THRESHOLD, current_price=current, price_drop=drop, station=best)

    async def evaluate_all(self, db: AsyncSession, now: datetime | None = None) -> list[RuleEvaluation]:
        """
        Evaluate every enabled rule, allowing at most ``daily_cap`` triggers
        per user in any 24h window (earlier runs plus this batch).
        Capped rules are reported as not triggering; their rows are untouched.
        """
        now = now or now_utc()
        since = now - CAP_WINDOW
        rules = await list_enabled_rules(db)

        prior: dict[str, int] = {}
        in_batch: dict[str, int] = {}
        out: list[RuleEvaluation] = []

        for rule in rules:
            uid = rule.user_id
            if uid not in prior:
                prior[uid] = await count_recent_triggers(db, uid, since)

            if prior[uid] + in_batch.get(uid, 0) >= self.daily_cap:
                out.append(RuleEvaluation(rule, AlertEvaluation(False, reason=DAILY_LIMIT)))
                continue

            try:
                evaluation = await self.evaluate_rule(db, rule, now)
            except FuelAppError as exc:
                logger.warning("Alert rule %s could not be evaluated: %s", rule.id, exc)
                evaluation = AlertEvaluation(False, reason=SEARCH_FAILED, error=str(exc))

            if evaluation.should_trigger:
                in_batch[uid] = in_batch.get(uid, 0) + 1
            out.append(RuleEvaluation(rule, evaluation))

        return out
