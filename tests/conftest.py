"""Shared fixtures: element sets, synthetic tracked objects, fake HTTP sessions."""
from datetime import date, datetime, timezone
from typing import Optional

import pytest
import requests

from orbitrack.models import (
    Category,
    LifecycleStatus,
    ObjectMetadata,
    OrbitalSummary,
    Position,
    TrackedObject,
)
from orbitrack.tle_parser import ElementSet

ISS_LINE1 = "1 25544U 98067A   24001.50000000  .00016717  00000-0  10270-3 0  9003"
ISS_LINE2 = "2 25544  51.6400 208.5000 0007417  68.0000 292.1000 15.49560000400000"
HST_LINE1 = "1 20580U 90037B   24001.50000000  .00000764  00000-0  34340-4 0  9998"
HST_LINE2 = "2 20580  28.4700 100.2000 0002500 300.0000  60.0000 15.09000000400000"

EPOCH = datetime(2024, 1, 1, 12, tzinfo=timezone.utc)
"""Epoch of both element sets above."""


def _make_object(
    object_id: str,
    altitude: float = 550.0,
    category: Category = Category.CONSTELLATION,
    name: Optional[str] = None,
    country: str = "USA",
    operator: str = "Starlink",
    status: LifecycleStatus = LifecycleStatus.ACTIVE,
    launch_date: Optional[date] = None,
    latitude: float = 0.0,
    longitude: float = 0.0,
    timestamp: datetime = EPOCH,
) -> TrackedObject:
    """Create a tracked object with placeholder elements for testing."""
    return TrackedObject(
        id=object_id,
        name=name or f"OBJECT {object_id}",
        category=category,
        status=status,
        elements=ElementSet(f"1 {object_id}", f"2 {object_id}"),
        position=Position(
            latitude=latitude,
            longitude=longitude,
            altitude_km=altitude,
            timestamp=timestamp,
            velocity_km_s=7.6,
        ),
        summary=OrbitalSummary(
            period_min=95.0,
            inclination_deg=53.0,
            eccentricity=0.0001,
            perigee_km=altitude,
            apogee_km=altitude,
        ),
        metadata=ObjectMetadata(operator=operator, country=country, launch_date=launch_date),
    )


@pytest.fixture
def make_object():
    return _make_object


@pytest.fixture
def iss_record():
    return {
        "NORAD_CAT_ID": "25544",
        "OBJECT_NAME": "ISS (ZARYA)",
        "OBJECT_TYPE": "PAYLOAD",
        "COUNTRY_CODE": "ISS",
        "LAUNCH_DATE": "1998-11-20",
        "DECAY_DATE": None,
        "INCLINATION": "51.64",
        "ECCENTRICITY": "0.0007417",
        "TLE_LINE1": ISS_LINE1,
        "TLE_LINE2": ISS_LINE2,
    }


@pytest.fixture
def hst_record():
    return {
        "NORAD_CAT_ID": 20580,
        "OBJECT_NAME": "HST",
        "OBJECT_TYPE": "PAYLOAD",
        "COUNTRY_CODE": "US",
        "TLE_LINE1": HST_LINE1,
        "TLE_LINE2": HST_LINE2,
    }


class FakeResponse:
    def __init__(self, text: str = "", status_code: int = 200):
        self.text = text
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")


class FakeSession:
    """Stands in for ``requests.Session``; ``handler`` maps a request to a reply.

    The handler may return a ``FakeResponse`` or an exception to raise.
    """

    def __init__(self, handler):
        self.headers = {}
        self.calls = []
        self._handler = handler

    def request(self, method, url, timeout=None, **kwargs):
        self.calls.append((method, url, kwargs))
        reply = self._handler(method, url, kwargs)
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeClock:
    """Monotonic clock whose ``sleep`` advances time instantly."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
