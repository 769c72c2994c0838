"""
Geo Utilities

Great-circle distance, arrival threshold checks and corridor geometry.
All functions are pure: same inputs, same outputs, no side effects.

Points are anything with ``lat`` and ``lng`` attributes (``GeoPoint``).
"""

import math
from typing import Sequence, Tuple

EARTH_RADIUS_KM = 6371.0
EARTH_RADIUS_M = EARTH_RADIUS_KM * 1000.0

MAP_LINK_TEMPLATE = "https://www.google.com/maps?q={lat},{lng}"
NAVIGATION_LINK_TEMPLATE = "https://www.google.com/maps/dir/?api=1&destination={lat},{lng}"


def haversine_km(a, b) -> float:
    """
    Great-circle distance between two points in kilometers

    Args:
        a: First point (lat/lng in degrees)
        b: Second point (lat/lng in degrees)

    Returns:
        Distance in km using the mean Earth radius (6371 km)
    """
    phi1 = math.radians(a.lat)
    phi2 = math.radians(b.lat)
    d_phi = math.radians(b.lat - a.lat)
    d_lambda = math.radians(b.lng - a.lng)

    x = (
        math.sin(d_phi / 2) ** 2 +
        math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    # Clamp against float drift so sqrt(1 - x) stays real
    x = min(1.0, max(0.0, x))

    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(x), math.sqrt(1 - x))


def distance_m(a, b) -> float:
    """Great-circle distance in meters"""
    return haversine_km(a, b) * 1000.0


def within_threshold(a, b, meters: float) -> bool:
    """Check if two points are within ``meters`` of each other (inclusive)"""
    return distance_m(a, b) <= meters


def is_valid_coordinate(lat, lng) -> bool:
    """Finite latitude in [-90, 90] and longitude in [-180, 180]"""
    try:
        lat = float(lat)
        lng = float(lng)
    except (TypeError, ValueError):
        return False

    if not (math.isfinite(lat) and math.isfinite(lng)):
        return False

    return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0


def _project(origin, point) -> Tuple[float, float]:
    """
    Project a point onto a local plane centred on origin

    Equirectangular approximation, accurate to well under a meter
    at city scale.

    Returns:
        (x, y) in meters (x east, y north)
    """
    mean_lat = math.radians((origin.lat + point.lat) / 2)
    x = math.radians(point.lng - origin.lng) * math.cos(mean_lat) * EARTH_RADIUS_M
    y = math.radians(point.lat - origin.lat) * EARTH_RADIUS_M
    return x, y


def distance_to_segment_m(point, start, end) -> Tuple[float, float]:
    """
    Distance from a point to the segment start -> end

    Args:
        point: Point to test
        start: Segment start
        end: Segment end

    Returns:
        (cross_track_m, fraction) where fraction is the unclamped position of
        the point's projection along the segment (0 = start, 1 = end).
        The distance is measured to the nearest point of the clamped segment.
    """
    ex, ey = _project(start, end)
    px, py = _project(start, point)

    length_sq = ex * ex + ey * ey
    if length_sq == 0:
        return math.hypot(px, py), 0.0

    fraction = (px * ex + py * ey) / length_sq
    clamped = min(1.0, max(0.0, fraction))

    dx = px - clamped * ex
    dy = py - clamped * ey
    return math.hypot(dx, dy), fraction


def path_length_m(path: Sequence) -> float:
    """Total great-circle length of a polyline in meters"""
    return sum(distance_m(path[i], path[i + 1]) for i in range(len(path) - 1))


def locate_on_path(point, path: Sequence) -> Tuple[float, float]:
    """
    Locate a point relative to a polyline

    Args:
        point: Point to locate
        path: Polyline with at least two vertices

    Returns:
        (cross_track_m, along_m): distance to the nearest segment and the
        distance travelled along the path to the point's projection on it.
        ``along_m`` is negative when the point projects before the start.
    """
    best_cross = math.inf
    best_along = 0.0
    travelled = 0.0

    for i in range(len(path) - 1):
        start, end = path[i], path[i + 1]
        seg_len = distance_m(start, end)
        cross, fraction = distance_to_segment_m(point, start, end)

        if cross < best_cross:
            best_cross = cross
            # Only the first segment may report progress before the path start
            if i == 0:
                best_along = min(fraction, 1.0) * seg_len
            else:
                best_along = travelled + min(1.0, max(0.0, fraction)) * seg_len

        travelled += seg_len

    return best_cross, best_along


def map_link(point) -> str:
    """Map link for a point (response-shape compatibility)"""
    return MAP_LINK_TEMPLATE.format(lat=point.lat, lng=point.lng)


def navigation_link(point) -> str:
    """Turn-by-turn navigation link to a destination"""
    return NAVIGATION_LINK_TEMPLATE.format(lat=point.lat, lng=point.lng)
