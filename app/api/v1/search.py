# app/api/v1/search.py
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db
from app.search.schemas import FuelType, SearchQuery, StationResult
from app.services.container import Services, get_services

router = APIRouter(prefix="/search", tags=["search"])


@router.get("/cheapest", response_model=list[StationResult])
async def cheapest(
    postcode: str | None = None,
    lat: float | None = None,
    lng: float | None = None,
    radiusMiles: float = Query(5),
    fuelType: FuelType = Query("petrol"),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
):
    # raises pydantic.ValidationError -> 400
    query = SearchQuery(postcode=postcode, lat=lat, lng=lng, radiusMiles=radiusMiles, fuelType=fuelType)

    if query.postcode:
        return await services.search.search_by_postcode(db, query.postcode, query.radiusMiles, query.fuelType)
    return await services.search.search_by_coordinates(
        db, query.lat, query.lng, query.radiusMiles, query.fuelType
    )
