import asyncio
import logging

from app.core.settings import settings
from app.ingestion.service import IngestionService
from app.ingestion.lock import INGESTION_LOCK

logger = logging.getLogger(__name__)

async def start_scheduler(svc: IngestionService):
    while True:
        try:
            async with INGESTION_LOCK:
                await svc.run_sync()
        except Exception:
            # keep scheduler alive
            logger.exception("Scheduled fuel sync crashed")

        await asyncio.sleep(settings.SYNC_PRICES_SECONDS)
