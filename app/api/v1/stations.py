from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db
from app.search.schemas import StationDetail
from app.services.container import Services, get_services

router = APIRouter(prefix="/stations", tags=["stations"])


@router.get("/{station_id}", response_model=StationDetail)
async def station_detail(
    station_id: str,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
):
    return await services.search.get_station_detail(db, station_id)
