from __future__ import annotations

import httpx
import pytest

from mtaji.config import get_settings
from mtaji.geo import Coordinate
from mtaji.geocoder import Geocoder, autofill_location


def _geocoder(handler) -> Geocoder:
    return Geocoder("https://nominatim.test", timeout=1.0, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_reverse_geocode():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"display_name": "Kibera, Nairobi, Kenya"})

    address = await _geocoder(handler).reverse_geocode(-1.31, 36.79)
    assert address == "Kibera, Nairobi, Kenya"
    assert seen[0].url.path == "/reverse"
    assert seen[0].url.params["format"] == "jsonv2"
    assert seen[0].url.params["lon"] == "36.79"
    assert seen[0].headers["User-Agent"].startswith("MtajiBot")


@pytest.mark.asyncio
async def test_reverse_geocode_server_error_returns_none(caplog):
    geocoder = _geocoder(lambda request: httpx.Response(503))
    assert await geocoder.reverse_geocode(-1.31, 36.79) is None
    assert "failed" in caplog.text


@pytest.mark.asyncio
async def test_reverse_geocode_connection_error_returns_none():
    def handler(request):
        raise httpx.ConnectError("no route to host", request=request)

    assert await _geocoder(handler).reverse_geocode(0.5, 35.0) is None


@pytest.mark.asyncio
async def test_search_places_skips_bad_rows():
    rows = [
        {"lat": "-0.0917", "lon": "34.768", "display_name": "Kisumu, Kenya"},
        {"lat": "oops", "lon": "34.7", "display_name": "Broken"},
        {"lat": "95", "lon": "34.7", "display_name": "Off the map"},
        {"display_name": "No coordinates"},
    ]
    places = await _geocoder(lambda request: httpx.Response(200, json=rows)).search_places("Kisumu")
    assert places == [{"coordinate": Coordinate(-0.0917, 34.768), "address": "Kisumu, Kenya"}]


@pytest.mark.asyncio
async def test_search_places_empty_query_makes_no_request():
    def handler(request):
        raise AssertionError("no request expected")

    assert await _geocoder(handler).search_places("  ") == []


@pytest.mark.asyncio
async def test_autofill_without_geocoder_is_a_copy():
    location = {"county": "", "coordinates": {"lat": -1.0, "lng": 36.0}}
    filled = await autofill_location(location, None)
    assert filled == location
    assert filled is not location


@pytest.mark.asyncio
async def test_autofill_sets_county_from_first_token():
    geocoder = _geocoder(lambda request: httpx.Response(200, json={"display_name": "Machakos Town, Machakos, Kenya"}))
    filled = await autofill_location({"coordinates": {"lat": -1.52, "lng": 37.26}}, geocoder)
    assert filled["county"] == "Machakos Town"
    assert filled["specific_area"] == "Machakos Town, Machakos, Kenya"


def test_from_settings_disabled_without_url():
    assert Geocoder.from_settings() is None


def test_from_settings(monkeypatch):
    monkeypatch.setenv("MTAJI_GEOCODER_URL", "https://nominatim.example/")
    get_settings.cache_clear()
    geocoder = Geocoder.from_settings()
    assert geocoder.base_url == "https://nominatim.example"
    assert geocoder.timeout == 15.0
