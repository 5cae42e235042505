"""
Spherical and planar geometry helpers.

Distances use the haversine formula on a spherical Earth. Polygon containment
uses the even-odd ray casting rule with (lat, lon) treated as planar
coordinates; that is accurate enough for zones a few kilometres across but is
not geodesically exact (edges are straight in lat/lon space, not great circles,
and polygons crossing the antimeridian are not supported).
"""

import math
from typing import Iterable, Mapping, Sequence, Union

EARTH_RADIUS_KM = 6371.0
EARTH_RADIUS_NM = 3440.065

Vertex = Union[Mapping[str, float], Sequence[float]]


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate distance in kilometres between two points."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)

    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def haversine_nm(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate distance in nautical miles between two points."""
    return haversine_km(lat1, lon1, lat2, lon2) * EARTH_RADIUS_NM / EARTH_RADIUS_KM


def bearing_deg(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Initial bearing from point 1 to point 2, in degrees [0, 360)."""
    lat1_rad, lat2_rad = math.radians(lat1), math.radians(lat2)
    delta_lon = math.radians(lon2 - lon1)

    y = math.sin(delta_lon) * math.cos(lat2_rad)
    x = math.cos(lat1_rad) * math.sin(lat2_rad) - math.sin(lat1_rad) * math.cos(lat2_rad) * math.cos(delta_lon)
    return (math.degrees(math.atan2(y, x)) + 360) % 360


def heading_difference(a: float, b: float) -> float:
    """Smallest angle between two headings, in degrees [0, 180]."""
    raw = abs(a - b) % 360
    return min(raw, 360 - raw)


def _vertex(v: Vertex) -> tuple[float, float]:
    if isinstance(v, Mapping):
        return v["lat"], v["lon"]
    return v[0], v[1]


def point_in_polygon(lat: float, lon: float, polygon: Iterable[Vertex]) -> bool:
    """
    Even-odd ray casting test.

    Vertices are {lat, lon} mappings or (lat, lon) pairs, in order; the ring is
    closed implicitly. Fewer than three vertices never contain a point.
    """
    vertices = [_vertex(v) for v in polygon]
    if len(vertices) < 3:
        return False

    inside = False
    j = len(vertices) - 1
    for i in range(len(vertices)):
        lat_i, lon_i = vertices[i]
        lat_j, lon_j = vertices[j]
        if (lat_i > lat) != (lat_j > lat):
            crossing_lon = (lon_j - lon_i) * (lat - lat_i) / (lat_j - lat_i) + lon_i
            if lon < crossing_lon:
                inside = not inside
        j = i
    return inside
