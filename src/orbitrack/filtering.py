"""Filter/query engine: criteria-matched, altitude-sorted, capped views.

``apply_filters`` is a pure function of (objects, criteria, cap). Each object
goes through the predicates in a fixed order and leaves at the first one it
fails:

    1. category        5. altitude range
    2. country         6. launch-date range
    3. operator        7. free-text search (name, operator, country, category)
    4. status          8. visible from the observer (visible-only with observer)

Empty criteria are skipped entirely. Survivors are stable-sorted by ascending
altitude, so equal altitudes keep their catalog order, then sliced to ``cap``.
"""
from __future__ import annotations

import math
from typing import Iterable, Sequence

import pandas as pd

from .models import FilterCriteria, Observer, Position, TrackedObject
from .propagator import WGS84_A, WGS84_E2


def apply_filters(
    objects: Iterable[TrackedObject],
    criteria: FilterCriteria,
    cap: int,
) -> tuple[TrackedObject, ...]:
    """Return the objects matching every criterion, sorted and capped.

    Args:
        objects: Canonical set, in catalog order.
        criteria: Current filter selection.
        cap: Maximum number of results; must be a positive integer.

    Returns:
        Matching objects, ascending by altitude, at most ``cap`` long.

    Raises:
        ValueError: If ``cap`` is not a positive integer.
    """
    if isinstance(cap, bool) or not isinstance(cap, int) or cap < 1:
        raise ValueError(f"cap must be a positive integer, got {cap!r}")

    categories = criteria.categories
    countries = criteria.countries
    operators = criteria.operators
    statuses = criteria.statuses
    min_alt, max_alt = criteria.altitude_range
    launch_from, launch_to = criteria.launch_date_range
    query = criteria.search.strip().lower()
    observer = criteria.observer if criteria.visible_only else None

    matched: list[TrackedObject] = []
    for obj in objects:
        if categories and obj.category not in categories:
            continue
        if countries and obj.metadata.country not in countries:
            continue
        if operators and obj.metadata.operator not in operators:
            continue
        if statuses and obj.status not in statuses:
            continue

        altitude = obj.position.altitude_km
        if min_alt is not None and altitude < min_alt:
            continue
        if max_alt is not None and altitude > max_alt:
            continue

        if launch_from or launch_to:
            launched = obj.metadata.launch_date
            if launched is None:
                continue
            if launch_from and launched < launch_from:
                continue
            if launch_to and launched > launch_to:
                continue

        if query and not _matches_search(obj, query):
            continue

        if observer and elevation_deg(observer, obj.position) < observer.min_elevation_deg:
            continue

        matched.append(obj)

    # list.sort is stable: ties keep catalog order.
    matched.sort(key=lambda o: o.position.altitude_km)
    return tuple(matched[:cap])


def _matches_search(obj: TrackedObject, query: str) -> bool:
    return (
        query in obj.name.lower()
        or query in obj.metadata.operator.lower()
        or query in obj.metadata.country.lower()
        or query in obj.category.value
    )


def elevation_deg(observer: Observer, position: Position) -> float:
    """Look angle of ``position`` above the observer's local horizon (degrees)."""
    obs = _geodetic_to_ecef(observer.latitude, observer.longitude, observer.altitude_km)
    sat = _geodetic_to_ecef(position.latitude, position.longitude, position.altitude_km)
    rng = [s - o for s, o in zip(sat, obs)]
    distance = math.sqrt(sum(c * c for c in rng))
    if distance == 0:
        return 90.0

    lat, lon = math.radians(observer.latitude), math.radians(observer.longitude)
    up = (math.cos(lat) * math.cos(lon), math.cos(lat) * math.sin(lon), math.sin(lat))
    sin_el = sum(r * u for r, u in zip(rng, up)) / distance
    return math.degrees(math.asin(max(-1.0, min(1.0, sin_el))))


def _geodetic_to_ecef(lat_deg: float, lon_deg: float, alt_km: float) -> tuple[float, float, float]:
    lat, lon = math.radians(lat_deg), math.radians(lon_deg)
    n = WGS84_A / math.sqrt(1.0 - WGS84_E2 * math.sin(lat) ** 2)
    return (
        (n + alt_km) * math.cos(lat) * math.cos(lon),
        (n + alt_km) * math.cos(lat) * math.sin(lon),
        (n * (1.0 - WGS84_E2) + alt_km) * math.sin(lat),
    )


def build_catalog_frame(objects: Sequence[TrackedObject]) -> pd.DataFrame:
    """Convert tracked objects to a DataFrame, one row per object, in order.

    Useful for exporting the filtered view or inspecting a catalog.
    """
    if not objects:
        return pd.DataFrame()
    return pd.DataFrame([obj.to_dict() for obj in objects])
