"""Raw record schema and conversion into ``TrackedObject``.

Every record from every source passes through ``parse_record``. The pydantic
``GPRecord`` schema checks field types and physical ranges; the TLE lines are
parsed for the orbital summary; the object is propagated once so that only
records with a valid current position enter the canonical set. Anything that
fails raises ``ValidationError`` and is dropped by the caller.

Field names follow Space-Track's GP class (``NORAD_CAT_ID``, ``OBJECT_NAME``,
``TLE_LINE1`` ...). CelesTrak 3LE feeds are mapped onto the same names.
"""
from __future__ import annotations

import logging
import math
import re
from datetime import date, datetime
from typing import Any, Iterable, Optional

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import PropagationError, ValidationError
from .models import (
    Category,
    LifecycleStatus,
    ObjectMetadata,
    OrbitalSummary,
    Position,
    TrackedObject,
)
from .propagator import propagate_strict
from .tle_parser import TLE

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[<>'\"&]")

REQUIRED_FIELDS = frozenset({"NORAD_CAT_ID", "TLE_LINE1", "TLE_LINE2"})


class GPRecord(BaseModel):
    """Schema for one raw general-perturbations record."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    NORAD_CAT_ID: int = Field(gt=0)
    OBJECT_NAME: Optional[str] = None
    OBJECT_TYPE: Optional[str] = None
    TLE_LINE0: Optional[str] = None
    TLE_LINE1: str = Field(min_length=11)
    TLE_LINE2: str = Field(min_length=11)
    COUNTRY_CODE: Optional[str] = None
    LAUNCH_DATE: Optional[date] = None
    DECAY_DATE: Optional[date] = None
    CONSTELLATION: Optional[str] = None
    INCLINATION: Optional[float] = Field(default=None, ge=0.0, le=180.0)
    ECCENTRICITY: Optional[float] = Field(default=None, ge=0.0, lt=1.0)
    PERIOD: Optional[float] = Field(default=None, gt=0.0)
    APOAPSIS: Optional[float] = None
    PERIAPSIS: Optional[float] = None

    @field_validator(
        "INCLINATION", "ECCENTRICITY", "PERIOD", "APOAPSIS", "PERIAPSIS",
        mode="after",
    )
    @classmethod
    def _finite(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and not math.isfinite(v):
            raise ValueError("must be finite")
        return v

    @field_validator(
        "OBJECT_NAME", "OBJECT_TYPE", "COUNTRY_CODE", "CONSTELLATION", "TLE_LINE0",
        "LAUNCH_DATE", "DECAY_DATE",
        mode="before",
    )
    @classmethod
    def _blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v


def parse_record(raw: dict, at: datetime) -> TrackedObject:
    """Validate a raw record and build a ``TrackedObject`` positioned at ``at``.

    Raises:
        ValidationError: If any required field is missing or malformed, the
            element set does not parse, or the initial position is invalid.
    """
    if not isinstance(raw, dict):
        raise ValidationError(f"expected a mapping, got {type(raw).__name__}")
    record_id = str(raw.get("NORAD_CAT_ID") or "") or None

    record = _validate_schema(raw, record_id)

    name = record.OBJECT_NAME or record.TLE_LINE0 or f"NORAD {record.NORAD_CAT_ID}"
    name = sanitize(name.removeprefix("0 "))

    try:
        tle = TLE.parse(record.TLE_LINE1, record.TLE_LINE2, name=name)
    except ValueError as e:
        raise ValidationError(f"malformed element set: {e}", record_id) from e

    if tle.norad_id != record.NORAD_CAT_ID:
        raise ValidationError(
            f"catalog id {record.NORAD_CAT_ID} does not match element set {tle.norad_id}",
            record_id,
        )

    try:
        result = propagate_strict(tle.elements, at)
    except PropagationError as e:
        raise ValidationError(f"cannot propagate: {e}", record_id) from e

    position = Position(
        latitude=result.latitude,
        longitude=result.longitude,
        altitude_km=result.altitude_km,
        timestamp=at,
        velocity_km_s=result.velocity_km_s,
        heading_deg=result.heading_deg,
    )
    if not position.is_valid():
        raise ValidationError("position out of range", record_id)

    summary = OrbitalSummary(
        period_min=record.PERIOD or tle.period_min,
        inclination_deg=record.INCLINATION if record.INCLINATION is not None else tle.inclination,
        eccentricity=record.ECCENTRICITY if record.ECCENTRICITY is not None else tle.eccentricity,
        perigee_km=max(0.0, record.PERIAPSIS if record.PERIAPSIS is not None else tle.perigee_km),
        apogee_km=record.APOAPSIS if record.APOAPSIS is not None else tle.apogee_km,
        epoch=tle.epoch,
    )
    if not 0.0 <= summary.inclination_deg <= 180.0 or not 0.0 <= summary.eccentricity < 1.0:
        raise ValidationError("orbital summary out of range", record_id)

    category = classify(name, record.OBJECT_TYPE)
    metadata = ObjectMetadata(
        operator=sanitize(record.CONSTELLATION or infer_operator(name)),
        country=sanitize(country_name(name, record.COUNTRY_CODE)),
        launch_date=record.LAUNCH_DATE,
        purpose=_PURPOSES.get(category, "Satellite Operations"),
    )

    return TrackedObject(
        id=str(record.NORAD_CAT_ID),
        name=name,
        category=category,
        status=LifecycleStatus.DECAYED if record.DECAY_DATE else LifecycleStatus.ACTIVE,
        elements=tle.elements,
        position=position,
        summary=summary,
        metadata=metadata,
    )


def _validate_schema(raw: dict, record_id: Optional[str]) -> GPRecord:
    """Validate ``raw``; invalid optional fields are dropped and defaulted."""
    try:
        return GPRecord.model_validate(raw)
    except pydantic.ValidationError as e:
        bad = {str(err["loc"][0]) for err in e.errors() if err["loc"]}
        if not bad or bad & REQUIRED_FIELDS:
            fields = ", ".join(sorted(bad)) or "record"
            raise ValidationError(f"invalid fields: {fields}", record_id) from e

    logger.debug("Record %s: defaulting invalid fields %s", record_id, sorted(bad))
    try:
        return GPRecord.model_validate({k: v for k, v in raw.items() if k not in bad})
    except pydantic.ValidationError as e:
        raise ValidationError("invalid record", record_id) from e


def parse_records(
    raws: Iterable[dict],
    at: datetime,
    seen: Optional[set[str]] = None,
) -> list[TrackedObject]:
    """Parse many records, dropping invalid ones and duplicate ids (first wins)."""
    seen = set() if seen is None else seen
    objects: list[TrackedObject] = []
    dropped = 0

    for raw in raws:
        if isinstance(raw, dict) and str(raw.get("NORAD_CAT_ID", "")).strip() in seen:
            continue
        try:
            obj = parse_record(raw, at)
        except ValidationError as e:
            dropped += 1
            logger.debug("Dropping %s", e)
            continue
        if obj.id in seen:
            continue
        seen.add(obj.id)
        objects.append(obj)

    if dropped:
        logger.info("Dropped %d invalid records", dropped)
    return objects


def tle_to_record(tle: TLE) -> dict:
    """Map a parsed 3LE entry onto GP field names."""
    return {
        "NORAD_CAT_ID": tle.norad_id,
        "OBJECT_NAME": tle.name,
        "TLE_LINE1": tle.line1,
        "TLE_LINE2": tle.line2,
    }


def sanitize(text: str) -> str:
    return _UNSAFE_CHARS.sub("", text).strip()


# ── Classification from names and object types ──

_CATEGORY_KEYWORDS: list[tuple[Category, tuple[str, ...]]] = [
    (Category.SPACE_STATION, ("ISS ", "ZARYA", "TIANHE", "TIANGONG", "CSS ", "STATION")),
    (Category.CONSTELLATION, (
        "STARLINK", "ONEWEB", "KUIPER", "IRIDIUM", "FLOCK", "DOVE", "SPIRE",
        "LEMUR", "SWARM", "GLOBALSTAR", "ORBCOMM",
    )),
    (Category.NAVIGATION, ("GPS", "NAVSTAR", "GALILEO", "GLONASS", "BEIDOU", "IRNSS", "QZS")),
    (Category.WEATHER, ("GOES", "METEOSAT", "NOAA", "DMSP", "HIMAWARI", "METEOR", "FENGYUN", "WEATHER")),
    (Category.SCIENTIFIC, ("HUBBLE", "HST", "JWST", "KEPLER", "TESS", "GAIA", "CLUSTER", "TELESCOPE")),
    (Category.EARTH_OBSERVATION, (
        "LANDSAT", "SENTINEL", "TERRA", "AQUA", "WORLDVIEW", "QUICKBIRD", "SPOT", "PLEIADES",
    )),
    (Category.COMMUNICATION, (
        "INTELSAT", "SES", "EUTELSAT", "ASTRA", "DIRECTV", "ECHOSTAR", "VIASAT", "THAICOM",
        "INMARSAT", "TDRS",
    )),
    (Category.MILITARY, ("USA ", "NROL", "MILSTAR", "AEHF", "WGS ", "SBIRS", "COSMOS")),
]

_OPERATORS: list[tuple[tuple[str, ...], str]] = [
    (("STARLINK",), "Starlink"),
    (("ONEWEB",), "OneWeb"),
    (("KUIPER",), "Project Kuiper"),
    (("IRIDIUM",), "Iridium"),
    (("FLOCK", "DOVE"), "Planet Labs"),
    (("SPIRE", "LEMUR"), "Spire Global"),
    (("SWARM",), "Swarm"),
    (("GLOBALSTAR",), "Globalstar"),
    (("ORBCOMM",), "ORBCOMM"),
    (("GPS", "NAVSTAR"), "GPS"),
    (("GALILEO",), "Galileo"),
    (("GLONASS",), "GLONASS"),
    (("BEIDOU",), "BeiDou"),
    (("ISS ", "ZARYA"), "ISS"),
]

COUNTRY_CODES = {
    "US": "USA",
    "USA": "USA",
    "CIS": "Russia",
    "RU": "Russia",
    "PRC": "China",
    "CN": "China",
    "ESA": "Europe",
    "EU": "Europe",
    "FR": "France",
    "GER": "Germany",
    "DE": "Germany",
    "UK": "United Kingdom",
    "GB": "United Kingdom",
    "JPN": "Japan",
    "JP": "Japan",
    "IND": "India",
    "IN": "India",
    "CA": "Canada",
    "ISS": "International",
}

_PURPOSES = {
    Category.SPACE_STATION: "Space Station",
    Category.CONSTELLATION: "Internet Constellation",
    Category.NAVIGATION: "Navigation",
    Category.WEATHER: "Weather Monitoring",
    Category.SCIENTIFIC: "Science",
    Category.EARTH_OBSERVATION: "Earth Observation",
    Category.COMMUNICATION: "Communication",
}


def classify(name: str, object_type: Optional[str] = None) -> Category:
    """Infer a category from the object type and name keywords."""
    upper = f"{name.upper()} "
    kind = (object_type or "").upper()

    if kind == "DEBRIS" or " DEB" in upper:
        return Category.DEBRIS
    if kind == "ROCKET BODY" or " R/B" in upper:
        return Category.ROCKET_BODY

    for category, keywords in _CATEGORY_KEYWORDS:
        if any(k in upper for k in keywords):
            return category

    if kind == "PAYLOAD":
        return Category.COMMUNICATION
    return Category.UNKNOWN


def infer_operator(name: str) -> str:
    upper = f"{name.upper()} "
    for keywords, operator in _OPERATORS:
        if any(k in upper for k in keywords):
            return operator
    return "Individual"


def country_name(name: str, country_code: Optional[str]) -> str:
    upper = name.upper()
    if upper.startswith("ISS ") or "ZARYA" in upper or "INTERNATIONAL" in upper:
        return "International"
    if "TIANHE" in upper or "TIANGONG" in upper:
        return "China"
    if country_code:
        return COUNTRY_CODES.get(country_code.upper(), country_code)
    if "STARLINK" in upper:
        return "USA"
    return "Unknown"
