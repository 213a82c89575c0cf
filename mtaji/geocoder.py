"""Optional address lookup against a Nominatim-compatible HTTP API.

Nothing here may block publishing: every failure is logged and turned into
an empty answer.
"""
from __future__ import annotations

import logging
from typing import Any

import httpx

from mtaji.config import get_settings
from mtaji.geo import Coordinate, in_range

log = logging.getLogger(__name__)


class Geocoder:
    def __init__(
        self, base_url: str, timeout: float = 15.0, user_agent: str = "MtajiBot/1.0",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.user_agent = user_agent
        self._transport = transport

    @classmethod
    def from_settings(cls) -> Geocoder | None:
        """None when no geocoder URL is configured."""
        settings = get_settings()
        if not settings.geocoder_url:
            return None
        return cls(settings.geocoder_url, settings.geocoder_timeout_seconds, settings.user_agent)

    async def _get(self, path: str, params: dict[str, Any]) -> Any:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                headers={"User-Agent": self.user_agent},
                transport=self._transport,
            ) as client:
                resp = await client.get(path, params={**params, "format": "jsonv2"})
                resp.raise_for_status()
                return resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            log.warning("Geocoder request %s failed: %s", path, exc)
            return None

    async def reverse_geocode(self, lat: float, lng: float) -> str | None:
        data = await self._get("/reverse", {"lat": lat, "lon": lng})
        if not isinstance(data, dict):
            return None
        return data.get("display_name") or None

    async def search_places(self, query: str, limit: int = 5) -> list[dict[str, Any]]:
        """``[{"coordinate": Coordinate, "address": str}, ...]`` for *query*."""
        query = (query or "").strip()
        if not query:
            return []
        data = await self._get("/search", {"q": query, "limit": limit})
        if not isinstance(data, list):
            return []
        places = []
        for item in data:
            try:
                coord = Coordinate(lat=float(item["lat"]), lng=float(item["lon"]))
            except (KeyError, TypeError, ValueError):
                continue
            if in_range(coord.lat, coord.lng):
                places.append({"coordinate": coord, "address": item.get("display_name", "")})
        return places


async def autofill_location(location: dict[str, Any], geocoder: Geocoder | None) -> dict[str, Any]:
    """Fill ``specific_area``/``county`` from a reverse lookup, only where empty.

    Returns a new dict; the input is left alone.
    """
    filled = dict(location)
    coords = filled.get("coordinates") or {}
    if geocoder is None or "lat" not in coords or "lng" not in coords:
        return filled
    if filled.get("specific_area") and filled.get("county"):
        return filled

    address = await geocoder.reverse_geocode(coords["lat"], coords["lng"])
    if not address:
        return filled
    if not filled.get("specific_area"):
        filled["specific_area"] = address
    if not filled.get("county"):
        filled["county"] = address.split(",")[0].strip()
    log.debug("Auto-filled location from reverse geocode: %s", address)
    return filled
