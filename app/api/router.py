from fastapi import APIRouter
from app.api.v1.health import router as health
from app.api.v1.admin_sync import router as admin
from app.api.v1.search import router as search
from app.api.v1.stations import router as stations
from app.api.v1.push import router as push


api = APIRouter()

api.include_router(health, prefix="/v1")
api.include_router(admin, prefix="/v1")
api.include_router(search, prefix="/v1")
api.include_router(stations, prefix="/v1")
api.include_router(push, prefix="/v1")
