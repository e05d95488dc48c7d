import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from app.api.router import api
from app.core.errors import (
    ConfigurationError,
    ExternalServiceError,
    InvalidQueryError,
    NotFoundError,
    RuleConfigurationError,
    ServiceFormatError,
)
from app.core.logging import configure_logging
from app.core.settings import settings
from app.db.init_db import init_db
from app.ingestion.scheduler import start_scheduler
from app.notifications.alert_scheduler import start_alert_scheduler
from app.services.container import get_services

logger = logging.getLogger(__name__)

app = FastAPI(title="Fuel Price Alerts Backend")


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


app.include_router(api)


@app.exception_handler(NotFoundError)
async def _not_found(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"error": str(exc)})


@app.exception_handler(ValidationError)
@app.exception_handler(InvalidQueryError)
@app.exception_handler(RuleConfigurationError)
async def _bad_request(request: Request, exc: Exception):
    return JSONResponse(status_code=400, content={"error": "Invalid request parameters", "details": str(exc)})


@app.exception_handler(ExternalServiceError)
@app.exception_handler(ServiceFormatError)
async def _upstream(request: Request, exc: Exception):
    logger.error("External service error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=502, content={"error": "External service unavailable. Please try again later."})


@app.exception_handler(ConfigurationError)
async def _misconfigured(request: Request, exc: ConfigurationError):
    logger.error("Configuration error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


@app.on_event("startup")
async def on_startup():
    configure_logging(settings.LOG_LEVEL)
    await init_db()
    if settings.RUN_SCHEDULERS:
        services = get_services()
        # start ingestion + alert schedulers in background
        asyncio.create_task(start_scheduler(services.ingestion))
        asyncio.create_task(start_alert_scheduler(services.alerts))
