"""Two-Line Element parsing and derived orbital summary values.

Parses standard NORAD Two-Line Element sets and derives the descriptive
quantities shown next to each tracked object: semi-major axis, perigee and
apogee altitude, and orbital period. These are computed once per element set
and never re-derived on each position update.

References:
    - Kelso, T.S. "CelesTrak TLE Format Documentation"
      https://celestrak.org/columns/v04n03/
    - Vallado, D. (2013). Fundamentals of Astrodynamics and Applications.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

logger = logging.getLogger(__name__)

# ── Physical constants (WGS84) ──

MU_EARTH = 398600.4418
"""Earth gravitational parameter (km³/s²)."""

R_EARTH = 6378.137
"""Earth equatorial radius (km)."""

SOLAR_DAY = 86400.0
"""Seconds in a solar day."""

TWO_PI = 2.0 * math.pi

MIN_LINE_LENGTH = 10
"""Shorter lines are never a usable element set."""


@dataclass(frozen=True, slots=True)
class ElementSet:
    """The raw two-line encoding handed to the propagator.

    Opaque to everything except the propagator and the ingestion boundary.
    """

    line1: str
    line2: str

    def looks_valid(self) -> bool:
        """Cheap syntactic check: both lines present, numbered and long enough."""
        return (
            len(self.line1.strip()) > MIN_LINE_LENGTH
            and len(self.line2.strip()) > MIN_LINE_LENGTH
            and self.line1.lstrip().startswith("1")
            and self.line2.lstrip().startswith("2")
        )


@dataclass(slots=True)
class TLE:
    """A parsed Two-Line Element set with derived orbital quantities.

    Attributes:
        name: Object name from line 0 (if present).
        norad_id: NORAD catalog number.
        intl_designator: International designator (launch year/number/piece).
        classification: Security classification (U/C/S).
        epoch: Epoch as an aware UTC datetime.
        bstar: B* drag term (1/Earth radii).
        inclination: Orbital inclination (degrees).
        raan: Right ascension of ascending node (degrees).
        eccentricity: Orbital eccentricity (dimensionless).
        arg_perigee: Argument of perigee (degrees).
        mean_anomaly: Mean anomaly (degrees).
        mean_motion: Mean motion (revolutions per day).
        line1: Original line 1 text.
        line2: Original line 2 text.
        semi_major_axis: Derived semi-major axis (km).
        perigee_km: Derived perigee altitude (km).
        apogee_km: Derived apogee altitude (km).
        period_min: Derived orbital period (minutes).
    """

    name: Optional[str]
    norad_id: int
    intl_designator: str
    classification: str
    epoch: datetime
    bstar: float
    inclination: float
    raan: float
    eccentricity: float
    arg_perigee: float
    mean_anomaly: float
    mean_motion: float
    line1: str
    line2: str

    semi_major_axis: float = field(init=False)
    perigee_km: float = field(init=False)
    apogee_km: float = field(init=False)
    period_min: float = field(init=False)

    def __post_init__(self) -> None:
        if self.mean_motion <= 0:
            raise ValueError(f"Mean motion must be positive, got {self.mean_motion}")
        n_rad_s = self.mean_motion * TWO_PI / SOLAR_DAY
        self.semi_major_axis = (MU_EARTH / n_rad_s**2) ** (1.0 / 3.0)
        self.perigee_km = self.semi_major_axis * (1.0 - self.eccentricity) - R_EARTH
        self.apogee_km = self.semi_major_axis * (1.0 + self.eccentricity) - R_EARTH
        self.period_min = SOLAR_DAY / self.mean_motion / 60.0

    @property
    def elements(self) -> ElementSet:
        return ElementSet(self.line1, self.line2)

    @staticmethod
    def parse(
        line1: str,
        line2: str,
        name: Optional[str] = None,
    ) -> TLE:
        """Parse a TLE from line 1 and line 2 strings.

        Args:
            line1: TLE line 1 (69 characters, starts with '1').
            line2: TLE line 2 (69 characters, starts with '2').
            name: Optional object name (from line 0).

        Returns:
            Parsed TLE object with derived orbital quantities.

        Raises:
            ValueError: If a field is malformed or the catalog numbers differ.
        """
        line1 = line1.rstrip()
        line2 = line2.rstrip()
        if len(line1) < 61 or len(line2) < 63:
            raise ValueError("TLE lines are too short")

        l1 = line1.ljust(69)
        l2 = line2.ljust(69)

        if l1[0] != "1":
            raise ValueError(f"Line 1 must start with '1', got '{l1[0]}'")
        if l2[0] != "2":
            raise ValueError(f"Line 2 must start with '2', got '{l2[0]}'")

        _verify_checksum(l1, 1)
        _verify_checksum(l2, 2)

        norad_id = _parse_catalog_number(l1[2:7])
        classification = l1[7]
        intl_designator = l1[9:17].strip()

        epoch_year_2d = int(l1[18:20].strip())
        epoch_year = (
            1900 + epoch_year_2d if epoch_year_2d >= 57 else 2000 + epoch_year_2d
        )
        epoch_day = float(l1[20:32].strip())
        bstar = _parse_implied_decimal(l1[53:61])

        norad_id_2 = _parse_catalog_number(l2[2:7])
        if norad_id != norad_id_2:
            raise ValueError(
                f"NORAD ID mismatch: {norad_id} vs {norad_id_2}"
            )

        return TLE(
            name=name.strip() if name else None,
            norad_id=norad_id,
            intl_designator=intl_designator,
            classification=classification,
            epoch=_epoch_to_datetime(epoch_year, epoch_day),
            bstar=bstar,
            inclination=float(l2[8:16].strip()),
            raan=float(l2[17:25].strip()),
            eccentricity=float(f"0.{l2[26:33].strip()}"),
            arg_perigee=float(l2[34:42].strip()),
            mean_anomaly=float(l2[43:51].strip()),
            mean_motion=float(l2[52:63].strip()),
            line1=line1,
            line2=line2,
        )

    @staticmethod
    def parse_batch(text: str) -> list[TLE]:
        """Parse 2-line or 3-line TLE text, skipping entries that fail to parse.

        Args:
            text: String containing one or more TLEs separated by newlines.

        Returns:
            Parsed TLE objects, in the order they appear.
        """
        lines = [line.rstrip() for line in text.strip().splitlines() if line.strip()]
        tles: list[TLE] = []
        i = 0

        while i < len(lines):
            if (
                lines[i].startswith("1 ")
                and i + 1 < len(lines)
                and lines[i + 1].startswith("2 ")
            ):
                name, l1, l2 = None, lines[i], lines[i + 1]
                i += 2
            elif (
                i + 2 < len(lines)
                and lines[i + 1].startswith("1 ")
                and lines[i + 2].startswith("2 ")
            ):
                name, l1, l2 = lines[i].removeprefix("0 "), lines[i + 1], lines[i + 2]
                i += 3
            else:
                i += 1
                continue

            try:
                tles.append(TLE.parse(l1, l2, name=name))
            except ValueError as e:
                logger.debug("Skipping malformed TLE %r: %s", name or l1[:20], e)

        return tles


# ── Private helpers ──


def _parse_catalog_number(s: str) -> int:
    """Parse a 5-character catalog number, including Alpha-5 (``A0001``)."""
    s = s.strip()
    if s and s[0].isalpha():
        letter = s[0].upper()
        if letter in "IO":
            raise ValueError(f"Invalid Alpha-5 prefix '{letter}'")
        offset = ord(letter) - ord("A") + 10
        offset -= (letter > "I") + (letter > "O")
        return offset * 10000 + int(s[1:])
    return int(s)


def _parse_implied_decimal(s: str) -> float:
    """Parse TLE implied-decimal notation into a float.

    ``16538-4`` becomes ``0.16538e-4``.
    """
    s = s.strip()
    if not s or s in ("00000-0", "00000+0"):
        return 0.0

    for i in range(len(s) - 1, 0, -1):
        if s[i] in "+-":
            mantissa = s[:i]
            exponent = s[i:]
            sign = "-" if mantissa.lstrip().startswith("-") else ""
            digits = mantissa.lstrip("+-").lstrip()
            return float(f"{sign}0.{digits}e{exponent}")

    sign = "-" if s.startswith("-") else ""
    digits = s.lstrip("+-").lstrip()
    return float(f"{sign}0.{digits}")


def _verify_checksum(line: str, line_num: int) -> None:
    """Log a debug message when a line's modulo-10 checksum does not match.

    Real-world feeds carry minor formatting differences, so a mismatch is
    not treated as fatal.
    """
    if len(line) < 69 or not line[68].isdigit():
        return

    expected = int(line[68])
    total = 0
    for ch in line[:68]:
        if ch.isdigit():
            total += int(ch)
        elif ch == "-":
            total += 1

    computed = total % 10
    if computed != expected:
        logger.debug(
            "Checksum mismatch on line %d: expected %d, computed %d",
            line_num,
            expected,
            computed,
        )


def _epoch_to_datetime(year: int, day_of_year: float) -> datetime:
    """Convert a TLE epoch (year + fractional day-of-year) to a UTC datetime."""
    jan1 = datetime(year, 1, 1, tzinfo=timezone.utc)
    return jan1 + timedelta(days=day_of_year - 1.0)
