from __future__ import annotations

import math

import pytest

from core.errors import InvalidLocation
from core.geo import address_similarity, distance_between, haversine_km, validate_coordinates
from core.models import Location


def test_haversine_one_degree_on_equator() -> None:
    assert haversine_km(0.0, 0.0, 0.0, 1.0) == pytest.approx(111.195, abs=0.01)


def test_distance_without_location_is_infinite() -> None:
    assert distance_between(Location(18.5, 73.8), None) == math.inf


def test_address_similarity_ignores_punctuation_and_case() -> None:
    assert address_similarity("MG Road, Pune", "mg road pune") == 1.0
    assert address_similarity("MG Road Pune", "FC Road Pune") == pytest.approx(0.5)
    assert address_similarity(None, "MG Road") == 0.0


@pytest.mark.parametrize(
    "latitude, longitude",
    [(None, 73.8), (18.5, None), (91.0, 0.5), (10.0, 181.0), (0.0, 0.0), ("north", 1.0), (float("nan"), 1.0)],
)
def test_invalid_coordinates(latitude, longitude) -> None:
    with pytest.raises(InvalidLocation):
        validate_coordinates(latitude, longitude)


def test_valid_coordinates_pass() -> None:
    validate_coordinates(18.5204, 73.8567)
    validate_coordinates("18.5", "73.8")
