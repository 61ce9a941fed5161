"""Distances, bearings and displacements on the sphere and the plane.

All angles are in degrees. Compass bearings run clockwise from north
(0 = north, 90 = east). Great-circle distances are in kilometres on a
sphere of radius ``EARTH_RADIUS_KM``; planar distances are in the map
units of the coordinates.
"""

from __future__ import annotations

import math
from typing import Any

import numpy as np
import numpy.typing as npt

EARTH_RADIUS_KM: float = 6371.0088  # IUGG mean radius


def haversine_km(
    lon1: Any,
    lat1: Any,
    lon2: Any,
    lat2: Any,
) -> Any:
    """Great-circle distance between points using the haversine formula.

    Accepts scalars or broadcastable numpy arrays.

    Args:
        lon1: Longitude of the first point(s).
        lat1: Latitude of the first point(s).
        lon2: Longitude of the second point(s).
        lat2: Latitude of the second point(s).

    Returns:
        Distance(s) in kilometres (float for scalar inputs).

    Example:
        >>> round(haversine_km(0.0, 0.0, 1.0, 0.0), 1)
        111.2
    """
    lat1_rad = np.radians(lat1)
    lat2_rad = np.radians(lat2)
    dlat = lat2_rad - lat1_rad
    dlon = np.radians(np.asarray(lon2) - np.asarray(lon1))

    a = np.sin(dlat / 2) ** 2 + np.cos(lat1_rad) * np.cos(lat2_rad) * np.sin(dlon / 2) ** 2
    c = 2 * np.arctan2(np.sqrt(a), np.sqrt(np.clip(1 - a, 0.0, None)))
    dist = EARTH_RADIUS_KM * c
    if np.ndim(dist) == 0:
        return float(dist)
    return dist


def planar_distance(x1: Any, y1: Any, x2: Any, y2: Any) -> Any:
    """Euclidean distance in map units."""
    dist = np.hypot(np.asarray(x2) - np.asarray(x1), np.asarray(y2) - np.asarray(y1))
    if np.ndim(dist) == 0:
        return float(dist)
    return dist


def compass_bearing(east: Any, north: Any) -> Any:
    """Convert vector components to a compass bearing in ``[0, 360)``.

    Args:
        east: Eastward component(s).
        north: Northward component(s).

    Returns:
        Bearing(s) in degrees clockwise from north.

    Example:
        >>> compass_bearing(1.0, 0.0)
        90.0
    """
    bearing = np.mod(np.degrees(np.arctan2(east, north)), 360.0)
    if np.ndim(bearing) == 0:
        return float(bearing)
    return bearing


def reverse_bearing(bearing: Any) -> Any:
    """Return the opposite compass direction."""
    return np.mod(np.asarray(bearing) + 180.0, 360.0)


def wrap_longitude(lon: float) -> float:
    """Wrap a longitude into ``[-180, 180)``."""
    return ((lon + 180.0) % 360.0) - 180.0


def destination_point(
    lon: float,
    lat: float,
    bearing: float,
    distance_km: float,
) -> tuple[float, float]:
    """Point reached from ``(lon, lat)`` along a great circle.

    Args:
        lon: Start longitude in degrees.
        lat: Start latitude in degrees.
        bearing: Initial compass bearing in degrees.
        distance_km: Distance to travel in kilometres.

    Returns:
        ``(lon, lat)`` of the destination. Longitude is not wrapped.
    """
    delta = distance_km / EARTH_RADIUS_KM
    theta = math.radians(bearing)
    phi1 = math.radians(lat)
    lam1 = math.radians(lon)

    sin_phi2 = math.sin(phi1) * math.cos(delta) + math.cos(phi1) * math.sin(
        delta
    ) * math.cos(theta)
    phi2 = math.asin(max(-1.0, min(1.0, sin_phi2)))
    lam2 = lam1 + math.atan2(
        math.sin(theta) * math.sin(delta) * math.cos(phi1),
        math.cos(delta) - math.sin(phi1) * sin_phi2,
    )
    return math.degrees(lam2), math.degrees(phi2)


def planar_destination(
    x: float,
    y: float,
    bearing: float,
    distance: float,
) -> tuple[float, float]:
    """Point reached from ``(x, y)`` moving *distance* map units along *bearing*."""
    theta = math.radians(bearing)
    return x + distance * math.sin(theta), y + distance * math.cos(theta)


def unit_sphere_xyz(
    lon: npt.ArrayLike,
    lat: npt.ArrayLike,
) -> npt.NDArray[np.float64]:
    """Cartesian coordinates of points on the unit sphere.

    Chord lengths between these points are monotonic in great-circle
    distance, which lets a Euclidean k-d tree answer great-circle
    radius queries.

    Returns:
        Array of shape ``(n, 3)``.
    """
    lon_r = np.radians(np.asarray(lon, dtype=np.float64))
    lat_r = np.radians(np.asarray(lat, dtype=np.float64))
    cos_lat = np.cos(lat_r)
    return np.column_stack(
        (cos_lat * np.cos(lon_r), cos_lat * np.sin(lon_r), np.sin(lat_r))
    )


def km_to_chord(distance_km: float) -> float:
    """Unit-sphere chord length matching a great-circle distance."""
    angle = min(distance_km / EARTH_RADIUS_KM, math.pi)
    return 2.0 * math.sin(angle / 2.0)
