# app/fuelfinder/schemas.py
"""
Strict models for the Fuel Finder "list stations" payload.

A page that fails validation is a service-format error for the whole run,
never a per-station skip.
"""
from __future__ import annotations

import math
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from app.db.base import as_naive_utc


def to_pence(price: float) -> int:
    """Whole pence, halves rounded up (150.5 -> 151)."""
    return int(math.floor(price + 0.5))


class FuelFinderStation(BaseModel):
    stationId: str = Field(min_length=1)
    brand: str = Field(min_length=1)
    name: str = Field(min_length=1)
    address: str = Field(min_length=1)
    postcode: str = Field(min_length=1)
    # strict: numbers must arrive as JSON numbers, not strings or booleans
    lat: float = Field(strict=True, ge=-90, le=90)
    lng: float = Field(strict=True, ge=-180, le=180)
    petrolPrice: float | None = Field(default=None, strict=True, ge=0)
    dieselPrice: float | None = Field(default=None, strict=True, ge=0)
    updatedAt: datetime  # ISO strings are parsed
    amenities: dict[str, Any] | None = None
    openingHours: dict[str, Any] | None = None

    @field_validator("lat", "lng", "petrolPrice", "dieselPrice")
    @classmethod
    def _finite(cls, v: float | None) -> float | None:
        if v is not None and not math.isfinite(v):
            raise ValueError("must be a finite number")
        return v

    @field_validator("updatedAt")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return as_naive_utc(v)

    @property
    def petrol_ppl(self) -> int | None:
        return None if self.petrolPrice is None else to_pence(self.petrolPrice)

    @property
    def diesel_ppl(self) -> int | None:
        return None if self.dieselPrice is None else to_pence(self.dieselPrice)


class Pagination(BaseModel):
    cursor: str | None = None
    hasMore: bool


class StationsPage(BaseModel):
    data: list[FuelFinderStation]
    pagination: Pagination | None = None  # absent = single page
