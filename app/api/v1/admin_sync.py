from fastapi import APIRouter, Depends, Request, Response

from app.ingestion.csv_import import parse_stations_csv
from app.ingestion.lock import INGESTION_LOCK
from app.services.container import Services, get_services

router = APIRouter()

# CSV uploads report partial / failed runs through the status code as well
_CSV_STATUS_CODES = {"success": 200, "partial": 207, "failed": 500}

@router.post("/admin/sync/prices")
async def sync_prices(services: Services = Depends(get_services)):
    async with INGESTION_LOCK:
        return await services.ingestion.run_sync()

@router.post("/admin/ingest-csv")
async def ingest_csv(request: Request, response: Response, services: Services = Depends(get_services)):
    body = (await request.body()).decode("utf-8-sig", errors="replace")
    # a bad file is a 400 before any run is recorded
    stations = parse_stations_csv(body)
    async with INGESTION_LOCK:
        result = await services.ingestion.ingest_stations(stations)
    response.status_code = _CSV_STATUS_CODES[result["status"]]
    return result

@router.post("/admin/alerts/run")
async def run_alerts(services: Services = Depends(get_services)):
    return await services.alerts.run_alerts()
