# app/search/schemas.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

FuelType = Literal["petrol", "diesel"]
FUEL_TYPES = ("petrol", "diesel")


class SearchQuery(BaseModel):
    postcode: str | None = None
    lat: float | None = Field(default=None, ge=-90, le=90)
    lng: float | None = Field(default=None, ge=-180, le=180)
    radiusMiles: float = Field(ge=1, le=25)
    fuelType: FuelType

    @model_validator(mode="after")
    def _one_origin(self) -> "SearchQuery":
        has_coords = self.lat is not None and self.lng is not None
        if not self.postcode and not has_coords:
            raise ValueError("Either postcode or lat/lng coordinates must be provided")
        return self


class StationResult(BaseModel):
    stationId: str
    brand: str
    name: str
    address: str
    postcode: str
    pricePerLitre: int
    distanceMiles: float
    lastUpdated: datetime


class StationDetail(StationResult):
    lat: float
    lng: float
    petrolPrice: int | None
    dieselPrice: int | None
    amenities: dict[str, Any] | None
    openingHours: dict[str, Any] | None
