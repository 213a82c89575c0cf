from __future__ import annotations

import math

import pytest

from mtaji.errors import ValidationFailed
from mtaji.geo import PLACEHOLDER, Coordinate, coerce_location, is_placeholder, parse, validate_coordinate


class TestParse:
    def test_plain_pair(self):
        assert parse("-1.2921, 36.8219") == Coordinate(-1.2921, 36.8219)

    def test_hemisphere_letters(self):
        assert parse("1.2921° S, 36.8219° E") == Coordinate(-1.2921, 36.8219)

    def test_west_is_negative(self):
        assert parse("1.5 N, 10 W") == Coordinate(1.5, -10.0)

    def test_hemisphere_overrides_sign(self):
        assert parse("-1.5 N, -10 E") == Coordinate(1.5, 10.0)

    def test_lowercase_hemisphere(self):
        assert parse("0.5s, 37e") == Coordinate(-0.5, 37.0)

    @pytest.mark.parametrize("text", [
        "91, 0",
        "0, 181",
        "-90.5 S, 0",
        "abc",
        "1, 2, 3",
        "1.0",
        "",
        None,
        "1 E, 2 N",
    ])
    def test_rejects(self, text):
        assert parse(text) is None

    def test_boundaries_accepted(self):
        assert parse("90, 180") == Coordinate(90.0, 180.0)
        assert parse("-90, -180") == Coordinate(-90.0, -180.0)


class TestPlaceholder:
    def test_placeholder_detected(self):
        assert is_placeholder(PLACEHOLDER)
        assert is_placeholder(Coordinate(-0.0236, 37.9062))

    def test_nearby_point_is_not_placeholder(self):
        assert not is_placeholder(Coordinate(-0.0236, 37.9063))

    def test_none(self):
        assert not is_placeholder(None)


class TestValidateCoordinate:
    def test_valid(self):
        assert validate_coordinate(-1.29, "36.82") == Coordinate(-1.29, 36.82)

    @pytest.mark.parametrize("lat,lng", [(None, 36.0), (1.0, None)])
    def test_missing(self, lat, lng):
        with pytest.raises(ValidationFailed) as exc:
            validate_coordinate(lat, lng)
        assert exc.value.field == "location.coordinates"

    def test_not_a_number(self):
        with pytest.raises(ValidationFailed) as exc:
            validate_coordinate("north", 36.0)
        assert exc.value.field == "location.coordinates.lat"

    def test_nan(self):
        with pytest.raises(ValidationFailed):
            validate_coordinate(math.nan, 36.0)

    @pytest.mark.parametrize("lat,lng", [(90.01, 0), (-91, 0), (0, 180.5), (0, -181)])
    def test_out_of_range(self, lat, lng):
        with pytest.raises(ValidationFailed, match="out of range"):
            validate_coordinate(lat, lng)

    def test_placeholder_rejected(self):
        with pytest.raises(ValidationFailed, match="default location"):
            validate_coordinate(PLACEHOLDER.lat, PLACEHOLDER.lng)


class TestCoerceLocation:
    def test_string_coordinates_converted(self):
        loc, repaired = coerce_location({"county": "Kisumu", "coordinates": {"lat": "-0.1", "lng": "34.75"}})
        assert not repaired
        assert loc["coordinates"] == {"lat": -0.1, "lng": 34.75}
        assert loc["county"] == "Kisumu"
        assert loc["specific_area"] == ""

    @pytest.mark.parametrize("raw", [None, "garbage", {}, {"coordinates": {"lat": "x", "lng": 1}},
                                     {"coordinates": {"lat": 200, "lng": 1}}])
    def test_malformed_reads_as_placeholder(self, raw):
        loc, repaired = coerce_location(raw)
        assert repaired
        assert loc["coordinates"] == PLACEHOLDER.as_dict()
        assert loc["county"] == ""
