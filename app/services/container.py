# app/services/container.py
from dataclasses import dataclass
from functools import lru_cache

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.cache.kv import KeyValueCache, SqlKeyValueCache
from app.db.session import SessionLocal
from app.fuelfinder.client import FuelFinderClient
from app.fuelfinder.oauth import TokenProvider
from app.geo.postcodes import PostcodeGeocoder
from app.ingestion.service import IngestionService
from app.notifications.alert_scheduler import AlertRunner
from app.notifications.evaluation import AlertEvaluator
from app.search.service import SearchService
from app.services.push_service import ExpoPushDispatcher, NotificationDispatcher


@dataclass
class Services:
    tokens: TokenProvider
    search: SearchService
    ingestion: IngestionService
    alerts: AlertRunner


def build_services(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    cache: KeyValueCache | None = None,
    tokens: TokenProvider | None = None,
    fuel_client: FuelFinderClient | None = None,
    geocoder: PostcodeGeocoder | None = None,
    dispatcher: NotificationDispatcher | None = None,
) -> Services:
    tokens = tokens or TokenProvider(cache or SqlKeyValueCache(session_factory))
    search = SearchService(geocoder or PostcodeGeocoder())
    return Services(
        tokens=tokens,
        search=search,
        ingestion=IngestionService(session_factory, tokens, fuel_client),
        alerts=AlertRunner(
            session_factory,
            AlertEvaluator(search),
            dispatcher or ExpoPushDispatcher(session_factory),
        ),
    )


@lru_cache
def get_services() -> Services:
    return build_services(SessionLocal)
