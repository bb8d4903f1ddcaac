"""Core data model: tracked objects, positions and filter criteria."""
from __future__ import annotations

import math
from dataclasses import dataclass, field, fields, replace
from datetime import date, datetime
from enum import Enum
from typing import Optional

from .tle_parser import ElementSet


class Category(str, Enum):
    """Closed set of object categories."""
    COMMUNICATION = "communication"
    NAVIGATION = "navigation"
    WEATHER = "weather"
    SCIENTIFIC = "scientific"
    EARTH_OBSERVATION = "earth-observation"
    SPACE_STATION = "space-station"
    MILITARY = "military"
    CONSTELLATION = "constellation"
    COMMERCIAL = "commercial"
    ROCKET_BODY = "rocket-body"
    DEBRIS = "debris"
    UNKNOWN = "unknown"

    @classmethod
    def coerce(cls, value: object) -> Category:
        """Map a raw value onto a member, falling back to ``UNKNOWN``."""
        try:
            return cls.parse(value)
        except ValueError:
            return cls.UNKNOWN

    @classmethod
    def parse(cls, value: object) -> Category:
        """Map a user-supplied name onto a member.

        Raises:
            ValueError: If the name is not a known category.
        """
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower().replace("_", "-").replace(" ", "-")
        try:
            return cls(text)
        except ValueError:
            raise ValueError(f"Unknown category: {value!r}") from None


class LifecycleStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    DECAYED = "decayed"
    UNKNOWN = "unknown"

    @classmethod
    def coerce(cls, value: object) -> LifecycleStatus:
        try:
            return cls.parse(value)
        except ValueError:
            return cls.UNKNOWN

    @classmethod
    def parse(cls, value: object) -> LifecycleStatus:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            raise ValueError(f"Unknown lifecycle status: {value!r}") from None


@dataclass(frozen=True, slots=True)
class Position:
    """Last computed geodetic position of an object.

    Attributes:
        latitude: Geodetic latitude in [-90, 90] degrees.
        longitude: Longitude in [-180, 180] degrees.
        altitude_km: Height above the WGS84 ellipsoid, never negative.
        timestamp: Aware UTC time the position refers to.
        velocity_km_s: Inertial speed (km/s).
        heading_deg: Ground track heading clockwise from north.
    """
    latitude: float
    longitude: float
    altitude_km: float
    timestamp: datetime
    velocity_km_s: float = 0.0
    heading_deg: float = 0.0

    def is_valid(self) -> bool:
        values = (self.latitude, self.longitude, self.altitude_km,
                  self.velocity_km_s, self.heading_deg)
        return (
            all(math.isfinite(v) for v in values)
            and -90.0 <= self.latitude <= 90.0
            and -180.0 <= self.longitude <= 180.0
            and self.altitude_km >= 0.0
        )


@dataclass(frozen=True, slots=True)
class OrbitalSummary:
    """Descriptive orbit values derived once at ingestion."""
    period_min: float
    inclination_deg: float
    eccentricity: float
    perigee_km: float
    apogee_km: float
    epoch: Optional[datetime] = None


@dataclass(frozen=True, slots=True)
class ObjectMetadata:
    """Best-effort provenance. Defaults stand in for missing source fields."""
    operator: str = "Individual"
    country: str = "Unknown"
    launch_date: Optional[date] = None
    purpose: str = "Satellite Operations"


@dataclass(frozen=True, slots=True)
class TrackedObject:
    """One tracked space object.

    Instances are immutable; the store swaps in a copy built with
    ``with_position`` whenever the scheduler delivers a new position.
    """
    id: str
    name: str
    category: Category
    status: LifecycleStatus
    elements: ElementSet
    position: Position
    summary: OrbitalSummary
    metadata: ObjectMetadata = field(default_factory=ObjectMetadata)

    @property
    def altitude_km(self) -> float:
        return self.position.altitude_km

    def with_position(self, position: Position) -> TrackedObject:
        return replace(self, position=position)

    def to_dict(self) -> dict:
        """Flatten to a dictionary suitable for DataFrame construction."""
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category.value,
            "status": self.status.value,
            "operator": self.metadata.operator,
            "country": self.metadata.country,
            "launch_date": self.metadata.launch_date,
            "purpose": self.metadata.purpose,
            "latitude": self.position.latitude,
            "longitude": self.position.longitude,
            "altitude_km": self.position.altitude_km,
            "velocity_km_s": self.position.velocity_km_s,
            "heading_deg": self.position.heading_deg,
            "timestamp": self.position.timestamp,
            "period_min": self.summary.period_min,
            "inclination_deg": self.summary.inclination_deg,
            "eccentricity": self.summary.eccentricity,
            "perigee_km": self.summary.perigee_km,
            "apogee_km": self.summary.apogee_km,
        }


@dataclass(frozen=True, slots=True)
class PositionUpdate:
    id: str
    position: Position


@dataclass(frozen=True, slots=True)
class Observer:
    """Ground location used by the visible-only filter.

    Attributes:
        latitude: Geodetic latitude (degrees).
        longitude: Longitude (degrees).
        altitude_km: Height above the ellipsoid (km).
        min_elevation_deg: Objects below this look angle are not visible.
    """
    latitude: float
    longitude: float
    altitude_km: float = 0.0
    min_elevation_deg: float = 0.0


@dataclass(frozen=True)
class FilterCriteria:
    """Immutable snapshot of the user's filter selection.

    Every empty set, blank search string or ``None`` bound means "no
    constraint". Category and status names must be known members. Replace
    wholesale with ``merge``.
    """
    categories: frozenset[Category] = frozenset()
    countries: frozenset[str] = frozenset()
    operators: frozenset[str] = frozenset()
    statuses: frozenset[LifecycleStatus] = frozenset()
    altitude_range: tuple[Optional[float], Optional[float]] = (None, None)
    launch_date_range: tuple[Optional[date], Optional[date]] = (None, None)
    search: str = ""
    visible_only: bool = False
    observer: Optional[Observer] = None

    def __post_init__(self) -> None:
        # Accept any iterable (or a bare string) for the set-valued fields.
        object.__setattr__(self, "categories", frozenset(
            Category.parse(c) for c in _as_iterable(self.categories)))
        object.__setattr__(self, "statuses", frozenset(
            LifecycleStatus.parse(s) for s in _as_iterable(self.statuses)))
        object.__setattr__(self, "countries", frozenset(_as_iterable(self.countries)))
        object.__setattr__(self, "operators", frozenset(_as_iterable(self.operators)))

        low, high = self.altitude_range
        low = None if low is None else float(low)
        high = None if high is None else float(high)
        if low is not None and high is not None and low > high:
            raise ValueError(f"Altitude range is inverted: {low} > {high}")
        object.__setattr__(self, "altitude_range", (low, high))
        object.__setattr__(self, "launch_date_range", tuple(self.launch_date_range))

    def merge(self, **partial) -> FilterCriteria:
        """Return a new criteria value with ``partial`` applied.

        Raises:
            TypeError: If a key is not a criteria field.
        """
        known = {f.name for f in fields(self)}
        unknown = set(partial) - known
        if unknown:
            raise TypeError(f"Unknown filter criteria: {', '.join(sorted(unknown))}")
        return replace(self, **partial)


def _as_iterable(value) -> tuple:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,) if value else ()
    return tuple(value)
