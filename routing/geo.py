"""
Purpose: Straight-line geography for dispatch.
What it does:
- haversine distance between two (lat, lng) points in kilometres
- coordinate sanity checks used by the scorer and the rider store

Rule: No road-network routing here. Travel time and ETA are not computed.
"""

from __future__ import annotations

import math
from typing import Optional, Tuple

# Internal coordinate type: (lat, lng)
LatLng = Tuple[float, float]

EARTH_RADIUS_KM = 6371.0


def haversine_km(a: LatLng, b: LatLng) -> float:
    lat1, lng1 = a
    lat2, lng2 = b
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dl = math.radians(lng2 - lng1)

    x = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dl / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(x))


def is_valid_coordinate(location: Optional[LatLng]) -> bool:
    """
    True when `location` is a (lat, lng) pair inside the valid ranges.
    NaN and missing values are rejected.
    """
    if location is None:
        return False
    try:
        lat, lng = location
        lat = float(lat)
        lng = float(lng)
    except (TypeError, ValueError):
        return False

    if math.isnan(lat) or math.isnan(lng):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0
