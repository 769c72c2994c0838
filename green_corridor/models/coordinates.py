"""
Coordinate Models

GPS coordinate model shared by missions, hospitals and signals.
"""

import math

from pydantic import BaseModel, field_validator


class GeoPoint(BaseModel):
    """GPS coordinate (latitude, longitude) in degrees"""
    lat: float                            # Latitude (-90 to 90)
    lng: float                            # Longitude (-180 to 180)

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {"lat": 18.5308, "lng": 73.8774}
        }

    @field_validator('lat')
    @classmethod
    def _check_lat(cls, value: float) -> float:
        if not math.isfinite(value) or not -90.0 <= value <= 90.0:
            raise ValueError("lat must be a finite number between -90 and 90")
        return value

    @field_validator('lng')
    @classmethod
    def _check_lng(cls, value: float) -> float:
        if not math.isfinite(value) or not -180.0 <= value <= 180.0:
            raise ValueError("lng must be a finite number between -180 and 180")
        return value
