"""Distance, shipping cost and delivery time estimates."""

from __future__ import annotations

import math

from inventory_network.models.warehouse import Coordinates

EARTH_RADIUS_KM = 6371.0

BASE_SHIPPING_COST = 50.0
COST_PER_KM = 2.0
COST_PER_UNIT_WEIGHT = 5.0

# (upper distance bound in km, delivery days)
DELIVERY_DAY_STEPS: list[tuple[float, int]] = [
    (50.0, 1),
    (200.0, 2),
    (500.0, 3),
    (1000.0, 5),
]
MAX_DELIVERY_DAYS = 7


def haversine_km(a: Coordinates, b: Coordinates) -> float:
    """Great-circle distance between two points in kilometers."""
    d_lat = math.radians(b.lat - a.lat)
    d_lng = math.radians(b.lng - a.lng)
    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(a.lat)) * math.cos(math.radians(b.lat)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def estimate_shipping_cost(distance_km: float, weight: float) -> float:
    return BASE_SHIPPING_COST + distance_km * COST_PER_KM + weight * COST_PER_UNIT_WEIGHT


def estimate_delivery_days(distance_km: float) -> int:
    for bound, days in DELIVERY_DAY_STEPS:
        if distance_km < bound:
            return days
    return MAX_DELIVERY_DAYS
