"""
Pydantic Models Package

Data models for the Green Corridor Service.
Import from here for convenience.
"""

# Coordinate models
from .coordinates import GeoPoint

# Hospital models
from .hospital import (
    Hospital,
    HospitalMatch,
    HospitalAssignment,
)


__all__ = [
    # Coordinates
    "GeoPoint",

    # Hospitals
    "Hospital",
    "HospitalMatch",
    "HospitalAssignment",
]
