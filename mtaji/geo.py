"""Coordinate parsing and validation.

Accepts the two forms publishers type into the location step::

    -1.2921, 36.8219
    1.2921° S, 36.8219° E

Hemisphere letters override the sign of the number (S/W negative, N/E
positive) before range checks run.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any

from mtaji.errors import ValidationFailed


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lng: float

    def as_dict(self) -> dict[str, float]:
        return {"lat": self.lat, "lng": self.lng}


# Default map centre (Kenya). Used as the "location not yet set" value.
PLACEHOLDER = Coordinate(lat=-0.0236, lng=37.9062)

_PART_RE = re.compile(r"^\s*([+-]?\d+(?:\.\d+)?)\s*°?\s*([NSEWnsew])?\s*$")


def in_range(lat: float, lng: float) -> bool:
    return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0


def is_placeholder(coord: Coordinate | None) -> bool:
    if coord is None:
        return False
    return (
        math.isclose(coord.lat, PLACEHOLDER.lat, abs_tol=1e-9)
        and math.isclose(coord.lng, PLACEHOLDER.lng, abs_tol=1e-9)
    )


def _signed(value: str, hemisphere: str | None, allowed: str) -> float | None:
    number = float(value)
    if hemisphere is None:
        return number
    hemisphere = hemisphere.upper()
    if hemisphere not in allowed:
        return None
    return -abs(number) if hemisphere in "SW" else abs(number)


def parse(text: str | None) -> Coordinate | None:
    """Parse free-form ``lat, lng`` input. Returns None for anything invalid."""
    if not text:
        return None
    parts = text.split(",")
    if len(parts) != 2:
        return None
    lat_match = _PART_RE.match(parts[0])
    lng_match = _PART_RE.match(parts[1])
    if not lat_match or not lng_match:
        return None
    lat = _signed(lat_match.group(1), lat_match.group(2), "NS")
    lng = _signed(lng_match.group(1), lng_match.group(2), "EW")
    if lat is None or lng is None or not in_range(lat, lng):
        return None
    return Coordinate(lat=lat, lng=lng)


def _as_float(value: Any, field: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationFailed(field, f"{field} must be a number") from None
    if math.isnan(number) or math.isinf(number):
        raise ValidationFailed(field, f"{field} must be a finite number")
    return number


def validate_coordinate(lat: Any, lng: Any, field: str = "location.coordinates") -> Coordinate:
    """Return a canonical coordinate or raise ``ValidationFailed``.

    Rejects out-of-range values and the placeholder, so an initiative cannot be
    published without an explicitly chosen location.
    """
    if lat is None or lng is None:
        raise ValidationFailed(field, "A location is required. Set it on the map or type coordinates.")
    coord = Coordinate(lat=_as_float(lat, f"{field}.lat"), lng=_as_float(lng, f"{field}.lng"))
    if not in_range(coord.lat, coord.lng):
        raise ValidationFailed(
            field,
            "Coordinates out of range: lat must be in [-90, 90] and lng in [-180, 180] "
            f"(got {coord.lat}, {coord.lng})",
        )
    if is_placeholder(coord):
        raise ValidationFailed(field, "Please set a location on the map. The default location cannot be used.")
    return coord


def coerce_location(raw: Any) -> tuple[dict[str, Any], bool]:
    """Normalize a stored location payload for reading.

    Returns ``(location, repaired)``. Malformed payloads come back with empty
    address strings and the placeholder coordinate instead of raising.
    """
    repaired = False
    if not isinstance(raw, dict):
        raw, repaired = {}, True
    coords = raw.get("coordinates")
    lat = lng = None
    if isinstance(coords, dict):
        try:
            lat = float(coords.get("lat"))
            lng = float(coords.get("lng"))
        except (TypeError, ValueError):
            lat = lng = None
    if lat is None or lng is None or math.isnan(lat) or math.isnan(lng) or not in_range(lat, lng):
        lat, lng = PLACEHOLDER.lat, PLACEHOLDER.lng
        repaired = True
    location: dict[str, Any] = {
        "county": raw.get("county") or "",
        "constituency": raw.get("constituency") or "",
        "specific_area": raw.get("specific_area") or "",
        "coordinates": {"lat": lat, "lng": lng},
    }
    if raw.get("geofence"):
        location["geofence"] = raw["geofence"]
    return location, repaired
