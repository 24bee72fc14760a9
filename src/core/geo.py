"""Distance and address helpers (core domain)."""

from __future__ import annotations

import math
import re
from typing import Optional

from core.errors import InvalidLocation
from core.models import Location

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two coordinates in kilometres."""

    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_between(first: Optional[Location], second: Optional[Location]) -> float:
    """Distance in kilometres, or infinity when either side has no coordinates."""

    if first is None or second is None:
        return math.inf
    return haversine_km(first.latitude, first.longitude, second.latitude, second.longitude)


def _normalize_address(address: str) -> str:
    return re.sub(r"[^a-z0-9\s]", "", address.lower()).strip()


def address_similarity(first: Optional[str], second: Optional[str]) -> float:
    """Token overlap (Jaccard) of two normalized addresses."""

    if not first or not second:
        return 0.0
    norm_first = _normalize_address(first)
    norm_second = _normalize_address(second)
    if not norm_first or not norm_second:
        return 0.0
    if norm_first == norm_second:
        return 1.0
    tokens_first = set(norm_first.split())
    tokens_second = set(norm_second.split())
    return len(tokens_first & tokens_second) / len(tokens_first | tokens_second)


def validate_coordinates(latitude: Optional[float], longitude: Optional[float]) -> None:
    """Raise InvalidLocation for missing or implausible coordinates."""

    if latitude is None or longitude is None:
        raise InvalidLocation("Latitude and longitude are required")
    try:
        lat = float(latitude)
        lon = float(longitude)
    except (TypeError, ValueError) as exc:
        raise InvalidLocation("Coordinates must be numeric") from exc
    if math.isnan(lat) or math.isnan(lon):
        raise InvalidLocation("Coordinates must be numeric")
    if not -90.0 <= lat <= 90.0 or not -180.0 <= lon <= 180.0:
        raise InvalidLocation(f"Coordinates out of range: {lat}, {lon}")
    # (0, 0) is what broken clients send when they have no fix.
    if lat == 0.0 and lon == 0.0:
        raise InvalidLocation("Coordinates point at 0, 0")
