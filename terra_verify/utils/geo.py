"""Great-circle distance between coordinates."""

import math

from terra_verify.data_management.schemas.quest_schema import Coordinate

EARTH_RADIUS_M = 6_371_000.0


def distance_meters(a: Coordinate, b: Coordinate) -> float:
    """Haversine distance in meters between two coordinates.

    Args:
        a: First coordinate.
        b: Second coordinate.

    Returns:
        Distance along the Earth's surface in meters. Identical points
        return 0.0; antipodal points return pi * EARTH_RADIUS_M.
    """
    phi1 = math.radians(a.lat)
    phi2 = math.radians(b.lat)
    d_phi = math.radians(b.lat - a.lat)
    d_lambda = math.radians(b.lng - a.lng)

    h = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    # Rounding can push h marginally past 1.0 for antipodal points
    h = min(1.0, max(0.0, h))
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))

    return EARTH_RADIUS_M * c
