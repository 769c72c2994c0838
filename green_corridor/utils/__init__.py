"""
Shared utilities

Geo helpers used by the hospital directory, the mission tracker and the
corridor manager.
"""

from .geo import (
    haversine_km,
    distance_m,
    within_threshold,
    is_valid_coordinate,
    distance_to_segment_m,
    locate_on_path,
    path_length_m,
    map_link,
    navigation_link,
)

__all__ = [
    "haversine_km",
    "distance_m",
    "within_threshold",
    "is_valid_coordinate",
    "distance_to_segment_m",
    "locate_on_path",
    "path_length_m",
    "map_link",
    "navigation_link",
]
