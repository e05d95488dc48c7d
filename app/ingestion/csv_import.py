# app/ingestion/csv_import.py
"""
Manual fallback feed: station + price rows as CSV.

    station_id,name,brand,address,postcode,lat,lng,petrol_price,diesel_price,updated_at[,amenities,opening_hours]

Rows become the same FuelFinderStation records the API produces, so they go
through the same upsert. Any bad row rejects the whole file.
"""
from __future__ import annotations

import csv
import io
import json

from pydantic import ValidationError

from app.core.errors import InvalidQueryError
from app.fuelfinder.schemas import FuelFinderStation

REQUIRED_HEADERS = (
    "station_id",
    "name",
    "brand",
    "address",
    "postcode",
    "lat",
    "lng",
    "petrol_price",
    "diesel_price",
    "updated_at",
)
OPTIONAL_HEADERS = ("amenities", "opening_hours")

_NULLS = ("", "null")


def _number(value: str) -> float:
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"not a number: {value!r}") from None


def _price(value: str) -> float | None:
    value = value.strip()
    return None if value in _NULLS else _number(value)


def _json_object(value: str | None) -> dict | None:
    # unreadable JSON is dropped, not fatal
    if value is None or value.strip() in _NULLS:
        return None
    try:
        parsed = json.loads(value)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _row_to_station(row: dict[str, str]) -> FuelFinderStation:
    return FuelFinderStation.model_validate(
        {
            "stationId": row["station_id"].strip(),
            "brand": row["brand"].strip(),
            "name": row["name"].strip(),
            "address": row["address"].strip(),
            "postcode": row["postcode"].strip(),
            "lat": _number(row["lat"].strip()),
            "lng": _number(row["lng"].strip()),
            "petrolPrice": _price(row["petrol_price"]),
            "dieselPrice": _price(row["diesel_price"]),
            "updatedAt": row["updated_at"].strip(),
            "amenities": _json_object(row.get("amenities")),
            "openingHours": _json_object(row.get("opening_hours")),
        }
    )


def parse_stations_csv(text: str) -> list[FuelFinderStation]:
    """Parse and validate a CSV upload. Raises InvalidQueryError listing every bad row."""
    if not text or not text.strip():
        raise InvalidQueryError("CSV data is empty")

    reader = csv.DictReader(io.StringIO(text.strip()))
    headers = [h.strip() for h in reader.fieldnames or []]
    missing = [h for h in REQUIRED_HEADERS if h not in headers]
    if missing:
        raise InvalidQueryError(f"CSV is missing required columns: {', '.join(missing)}")
    reader.fieldnames = headers

    stations: list[FuelFinderStation] = []
    errors: list[str] = []
    # DictReader skips blank lines; short rows get None values, long rows a None key
    for row in reader:
        line_no = reader.line_num
        if None in row or None in row.values():
            errors.append(f"Row {line_no}: expected {len(headers)} fields")
            continue
        try:
            stations.append(_row_to_station(row))
        except ValidationError as exc:
            fields = ", ".join(f"{'.'.join(map(str, e['loc']))}: {e['msg']}" for e in exc.errors())
            errors.append(f"Row {line_no}: {fields}")
        except ValueError as exc:
            errors.append(f"Row {line_no}: {exc}")

    if errors:
        raise InvalidQueryError("CSV validation failed:\n" + "\n".join(errors))
    if not stations:
        raise InvalidQueryError("No data rows found in CSV")
    return stations
