import asyncio

# one ingestion run at a time per process (scheduler + admin trigger)
INGESTION_LOCK = asyncio.Lock()
