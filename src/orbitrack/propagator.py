"""SGP4 propagation to geodetic position, velocity and heading.

Wraps the ``sgp4`` library's ``Satrec`` and converts its TEME output to
latitude, longitude and altitude over the WGS84 ellipsoid. Two entry points:

    propagate_strict   raises ``PropagationError`` on any failure.
    propagate          never raises; failures and non-finite values collapse
                       to ``FALLBACK_RESULT`` so corrupt numbers cannot reach
                       the filter and sort pipeline.

Both are pure functions of (elements, time).
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import Union

import numpy as np
from sgp4.api import Satrec, jday

from .errors import PropagationError
from .tle_parser import ElementSet

logger = logging.getLogger(__name__)

# WGS84
WGS84_A = 6378.137
WGS84_F = 1.0 / 298.257223563
WGS84_E2 = WGS84_F * (2.0 - WGS84_F)

# SGP4 error code meanings
SGP4_ERROR_CODES = {
    1: "Mean eccentricity < 0.0 or > 1.0",
    2: "Mean motion < 0.0",
    3: "Perturbed eccentricity < 0.0 or > 1.0",
    4: "Semi-latus rectum < 0.0",
    5: "Epoch elements are sub-orbital",
    6: "Satellite has decayed",
}


@dataclass(frozen=True, slots=True)
class PropagationResult:
    latitude: float
    longitude: float
    altitude_km: float
    velocity_km_s: float
    heading_deg: float

    def is_finite(self) -> bool:
        return all(math.isfinite(v) for v in (
            self.latitude, self.longitude, self.altitude_km,
            self.velocity_km_s, self.heading_deg,
        ))


FALLBACK_RESULT = PropagationResult(
    latitude=0.0,
    longitude=0.0,
    altitude_km=400.0,
    velocity_km_s=7.8,
    heading_deg=0.0,
)
"""Returned by ``propagate`` whenever a real position cannot be computed."""


def propagate_strict(elements: Union[ElementSet, str], at: datetime) -> PropagationResult:
    """Propagate an element set to ``at``.

    Args:
        elements: Two-line element set, or its text (an optional name line
            followed by lines 1 and 2).
        at: Target time. Naive datetimes are taken as UTC.

    Returns:
        Geodetic position, speed and heading at ``at``.

    Raises:
        PropagationError: If the element set is malformed, SGP4 reports an
            error, or any output is non-finite.
    """
    elements = _as_element_set(elements)
    if not elements.looks_valid():
        raise PropagationError("Element set is not a two-line encoding")

    satrec = _load_satrec(elements.line1, elements.line2)
    jd, fr = _julian_date(at)

    error, r, v = satrec.sgp4(jd, fr)
    if error != 0:
        raise PropagationError(
            f"SGP4 error {error}: {SGP4_ERROR_CODES.get(error, 'unknown error')}"
        )

    r_teme = np.asarray(r, dtype=float)
    v_teme = np.asarray(v, dtype=float)
    if not (np.all(np.isfinite(r_teme)) and np.all(np.isfinite(v_teme))):
        raise PropagationError("SGP4 produced non-finite state vector")

    r_ecef, v_ecef = _teme_to_ecef(r_teme, v_teme, jd + fr)
    lat, lon, alt = _ecef_to_geodetic(r_ecef)
    heading = _heading(lat, lon, v_ecef)

    result = PropagationResult(
        latitude=lat,
        longitude=_wrap_longitude(lon),
        altitude_km=max(alt, 0.0),
        velocity_km_s=float(np.linalg.norm(v_teme)),
        heading_deg=heading,
    )
    if not result.is_finite():
        raise PropagationError("Geodetic conversion produced non-finite values")
    return result


def propagate(elements: Union[ElementSet, str], at: datetime) -> PropagationResult:
    """Propagate like ``propagate_strict`` but return ``FALLBACK_RESULT`` on failure."""
    try:
        return propagate_strict(elements, at)
    except PropagationError as e:
        logger.debug("Propagation failed, using fallback: %s", e)
        return FALLBACK_RESULT


# ── Private helpers ──


def _as_element_set(elements) -> ElementSet:
    if isinstance(elements, str):
        lines = [ln for ln in elements.splitlines() if ln.strip()]
        if len(lines) < 2:
            raise PropagationError("Element text must contain two lines")
        return ElementSet(lines[-2], lines[-1])
    if (
        isinstance(elements, ElementSet)
        and isinstance(elements.line1, str)
        and isinstance(elements.line2, str)
    ):
        return elements
    raise PropagationError(f"Expected an element set, got {type(elements).__name__}")


@lru_cache(maxsize=20000)
def _load_satrec(line1: str, line2: str) -> Satrec:
    try:
        satrec = Satrec.twoline2rv(line1, line2)
    except (ValueError, IndexError) as e:
        raise PropagationError(f"Malformed element set: {e}") from e
    if satrec.error != 0:
        raise PropagationError(
            f"SGP4 init error {satrec.error}: "
            f"{SGP4_ERROR_CODES.get(satrec.error, 'unknown error')}"
        )
    return satrec


def _julian_date(at: datetime) -> tuple[float, float]:
    if not isinstance(at, datetime):
        raise PropagationError(f"Timestamp must be a datetime, got {type(at).__name__}")
    if at.tzinfo is None:
        at = at.replace(tzinfo=timezone.utc)
    at = at.astimezone(timezone.utc)
    return jday(
        at.year, at.month, at.day,
        at.hour, at.minute, at.second + at.microsecond / 1e6,
    )


def _gmst(jd_ut1: float) -> float:
    """Greenwich mean sidereal time (radians), IAU-82 model."""
    t = (jd_ut1 - 2451545.0) / 36525.0
    seconds = (
        -6.2e-6 * t**3
        + 0.093104 * t**2
        + (876600.0 * 3600.0 + 8640184.812866) * t
        + 67310.54841
    )
    return math.radians(seconds / 240.0) % (2.0 * math.pi)


def _teme_to_ecef(
    r: np.ndarray, v: np.ndarray, jd_ut1: float
) -> tuple[np.ndarray, np.ndarray]:
    """Rotate TEME state into the Earth-fixed frame (polar motion ignored)."""
    theta = _gmst(jd_ut1)
    c, s = math.cos(theta), math.sin(theta)
    rot = np.array([[c, s, 0.0], [-s, c, 0.0], [0.0, 0.0, 1.0]])
    omega = np.array([0.0, 0.0, 7.292115146706979e-5])
    r_ecef = rot @ r
    v_ecef = rot @ v - np.cross(omega, r_ecef)
    return r_ecef, v_ecef


def _ecef_to_geodetic(r: np.ndarray) -> tuple[float, float, float]:
    """Convert an ECEF position (km) to geodetic lat/lon (deg) and height (km)."""
    x, y, z = (float(c) for c in r)
    lon = math.atan2(y, x)
    p = math.hypot(x, y)
    lat = math.atan2(z, p * (1.0 - WGS84_E2))

    for _ in range(5):
        n = WGS84_A / math.sqrt(1.0 - WGS84_E2 * math.sin(lat) ** 2)
        lat = math.atan2(z + n * WGS84_E2 * math.sin(lat), p)

    n = WGS84_A / math.sqrt(1.0 - WGS84_E2 * math.sin(lat) ** 2)
    if abs(math.cos(lat)) > 1e-10:
        alt = p / math.cos(lat) - n
    else:
        alt = abs(z) - n * (1.0 - WGS84_E2)
    return math.degrees(lat), math.degrees(lon), alt


def _heading(lat_deg: float, lon_deg: float, v_ecef: np.ndarray) -> float:
    """Ground track heading (degrees clockwise from north)."""
    lat, lon = math.radians(lat_deg), math.radians(lon_deg)
    vx, vy, vz = (float(c) for c in v_ecef)
    east = -math.sin(lon) * vx + math.cos(lon) * vy
    north = (
        -math.sin(lat) * math.cos(lon) * vx
        - math.sin(lat) * math.sin(lon) * vy
        + math.cos(lat) * vz
    )
    return math.degrees(math.atan2(east, north)) % 360.0


def _wrap_longitude(lon: float) -> float:
    wrapped = (lon + 180.0) % 360.0 - 180.0
    return 180.0 if wrapped == -180.0 and lon > 0 else wrapped
