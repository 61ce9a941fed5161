"""Tests for distances, bearings and displacements."""

from __future__ import annotations

import math

import numpy as np
import pytest

from climvelocity.geodesy import (
    EARTH_RADIUS_KM,
    compass_bearing,
    destination_point,
    haversine_km,
    km_to_chord,
    planar_destination,
    planar_distance,
    reverse_bearing,
    unit_sphere_xyz,
    wrap_longitude,
)

KM_PER_DEGREE = 2 * math.pi * EARTH_RADIUS_KM / 360.0


@pytest.mark.unit
class TestHaversine:
    """Verify great-circle distances."""

    def test_one_degree_on_equator(self) -> None:
        assert haversine_km(0.0, 0.0, 1.0, 0.0) == pytest.approx(KM_PER_DEGREE)

    def test_longitude_shrinks_with_latitude(self) -> None:
        at_60 = haversine_km(0.0, 60.0, 1.0, 60.0)
        assert at_60 == pytest.approx(KM_PER_DEGREE * 0.5, rel=1e-3)

    def test_same_point_is_zero(self) -> None:
        assert haversine_km(12.3, -45.6, 12.3, -45.6) == 0.0

    def test_across_antimeridian(self) -> None:
        assert haversine_km(179.5, 0.0, -179.5, 0.0) == pytest.approx(KM_PER_DEGREE)

    def test_vectorised(self) -> None:
        dist = haversine_km(np.zeros(3), np.zeros(3), np.array([0.0, 1.0, 2.0]), 0.0)
        assert isinstance(dist, np.ndarray)
        np.testing.assert_allclose(dist, [0.0, KM_PER_DEGREE, 2 * KM_PER_DEGREE])

    def test_scalar_returns_float(self) -> None:
        assert isinstance(haversine_km(0.0, 0.0, 0.0, 1.0), float)


@pytest.mark.unit
class TestBearings:
    """Verify compass bearing conventions."""

    @pytest.mark.parametrize(
        ("east", "north", "expected"),
        [
            (0.0, 1.0, 0.0),
            (1.0, 0.0, 90.0),
            (0.0, -1.0, 180.0),
            (-1.0, 0.0, 270.0),
            (1.0, 1.0, 45.0),
        ],
    )
    def test_compass_bearing(self, east: float, north: float, expected: float) -> None:
        assert compass_bearing(east, north) == pytest.approx(expected)

    def test_bearing_in_range(self) -> None:
        bearings = compass_bearing(np.array([-1e-9, -1.0]), np.array([1.0, -1e-9]))
        assert np.all((bearings >= 0) & (bearings < 360))

    def test_reverse_bearing(self) -> None:
        np.testing.assert_allclose(reverse_bearing([0.0, 90.0, 270.0]), [180.0, 270.0, 90.0])

    def test_wrap_longitude(self) -> None:
        assert wrap_longitude(190.0) == pytest.approx(-170.0)
        assert wrap_longitude(-180.0) == pytest.approx(-180.0)
        assert wrap_longitude(45.0) == pytest.approx(45.0)


@pytest.mark.unit
class TestDestinations:
    """Verify displacement along a bearing."""

    def test_due_north_one_degree(self) -> None:
        lon, lat = destination_point(10.0, 0.0, 0.0, KM_PER_DEGREE)
        assert lon == pytest.approx(10.0)
        assert lat == pytest.approx(1.0)

    def test_due_east_on_equator(self) -> None:
        lon, lat = destination_point(0.0, 0.0, 90.0, 2 * KM_PER_DEGREE)
        assert lon == pytest.approx(2.0)
        assert lat == pytest.approx(0.0, abs=1e-9)

    def test_destination_distance_matches_haversine(self) -> None:
        lon, lat = destination_point(5.0, 40.0, 37.0, 250.0)
        assert haversine_km(5.0, 40.0, lon, lat) == pytest.approx(250.0)

    def test_zero_distance_stays(self) -> None:
        assert destination_point(3.0, 4.0, 123.0, 0.0) == pytest.approx((3.0, 4.0))

    def test_planar_destination(self) -> None:
        x, y = planar_destination(0.0, 0.0, 90.0, 5.0)
        assert x == pytest.approx(5.0)
        assert y == pytest.approx(0.0, abs=1e-12)

    def test_planar_distance(self) -> None:
        assert planar_distance(0.0, 0.0, 3.0, 4.0) == 5.0


@pytest.mark.unit
class TestUnitSphere:
    """Verify the chord transform behind great-circle radius queries."""

    def test_points_on_unit_sphere(self) -> None:
        xyz = unit_sphere_xyz([0.0, 90.0, -45.0], [0.0, 30.0, -60.0])
        assert xyz.shape == (3, 3)
        np.testing.assert_allclose(np.linalg.norm(xyz, axis=1), 1.0)

    def test_chord_matches_distance(self) -> None:
        xyz = unit_sphere_xyz([0.0, 3.0], [0.0, 4.0])
        chord = float(np.linalg.norm(xyz[0] - xyz[1]))
        assert chord == pytest.approx(km_to_chord(haversine_km(0.0, 0.0, 3.0, 4.0)))

    def test_chord_capped_at_antipode(self) -> None:
        assert km_to_chord(1e9) == pytest.approx(2.0)
