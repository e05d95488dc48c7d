# app/notifications/alert_scheduler.py
from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.settings import settings
from app.db.base import now_utc
from app.db.models.runs import AlertRun
from app.notifications.content import create_alert_notification
from app.notifications.evaluation import NO_BASELINE, SEARCH_FAILED, AlertEvaluator
from app.notifications.rules import mark_triggered, record_baseline
from app.services.push_service import NotificationDispatcher

logger = logging.getLogger(__name__)


class AlertRunner:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        evaluator: AlertEvaluator,
        dispatcher: NotificationDispatcher,
    ) -> None:
        self.session_factory = session_factory
        self.evaluator = evaluator
        self.dispatcher = dispatcher

    async def run_alerts(self, now: datetime | None = None) -> dict:
        """
        One alert tick:
        - evaluate every enabled rule (cooldown + per-user daily cap)
        - send each triggered alert, then record it on the rule
        - seed the baseline price of rules seen for the first time

        A rule is only marked triggered after its notification was accepted,
        so a crash in between re-sends rather than silently drops the alert.
        """
        now = now or now_utc()
        started_at = now_utc()
        evaluated = triggered = sent = baselines = 0
        errors: list[str] = []

        try:
            async with self.session_factory() as db:
                evaluations = await self.evaluator.evaluate_all(db, now)
                evaluated = len(evaluations)

                for item in evaluations:
                    rule, ev = item.rule, item.evaluation

                    if ev.should_trigger:
                        triggered += 1
                        notification = create_alert_notification(ev.station, ev.current_price, ev.price_drop)
                        try:
                            await self.dispatcher.send(rule.user_id, notification)
                        except Exception as exc:
                            logger.error("Failed to send alert %s: %s", rule.id, exc)
                            errors.append(f"Failed to process alert {rule.id}: {exc}")
                            continue

                        try:
                            await mark_triggered(db, rule.id, ev.current_price, now)
                        except Exception as exc:
                            # already delivered; the next run may deliver it again
                            logger.exception("Alert %s sent but not recorded", rule.id)
                            errors.append(f"Failed to record alert {rule.id}: {exc}")
                        sent += 1

                    elif ev.reason == NO_BASELINE and ev.current_price is not None:
                        await record_baseline(db, rule.id, ev.current_price)
                        baselines += 1

                    elif ev.reason == SEARCH_FAILED:
                        errors.append(f"Failed to evaluate alert {rule.id}: {ev.error}")

            if not errors:
                status = "success"
            else:
                status = "partial" if sent > 0 else "failed"
        except Exception as exc:
            logger.exception("Alert run failed")
            errors.append(f"Alert run failed: {exc}")
            status = "failed"

        result = {
            "status": status,
            "evaluatedCount": evaluated,
            "triggeredCount": triggered,
            "sentCount": sent,
            "baselinesRecorded": baselines,
            "errors": errors,
            "startedAt": started_at,
            "finishedAt": now_utc(),
        }
        logger.info(
            "Alert run %s: %d evaluated, %d sent, %d baselines, %d errors",
            status, evaluated, sent, baselines, len(errors),
        )

        try:
            await self._record_run(result)
        except Exception:
            logger.exception("Failed to record alert run")

        return result

    async def _record_run(self, result: dict) -> None:
        async with self.session_factory() as db:
            db.add(
                AlertRun(
                    started_at=result["startedAt"],
                    finished_at=result["finishedAt"],
                    status=result["status"],
                    evaluated_count=result["evaluatedCount"],
                    sent_count=result["sentCount"],
                    error_summary={"errors": result["errors"]} if result["errors"] else None,
                )
            )
            await db.commit()


async def start_alert_scheduler(runner: AlertRunner) -> None:
    """
    Runs forever inside the FastAPI startup task.
    """
    while True:
        try:
            await runner.run_alerts()
        except Exception:
            # keep scheduler alive
            logger.exception("Scheduled alert run crashed")
        await asyncio.sleep(settings.ALERT_RUN_SECONDS)
