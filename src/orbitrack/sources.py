"""Orbital element sources: Space-Track, CelesTrak and local files.

Each HTTP source owns one ``requests.Session`` and one ``RequestQueue``, so
all of its requests are serialized and spaced by the rate limit. Blocking
``requests`` calls run in a worker thread; the event loop only awaits them.

Space-Track requires a free account at
https://www.space-track.org/auth/createAccount. Set credentials via::

    export SPACETRACK_USER="your@email.com"
    export SPACETRACK_PASS="your_password"

Or pass them directly to ``SpaceTrackSource``.
"""
from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path
from typing import Iterable, Optional

import requests
from tqdm import tqdm

from .errors import AuthenticationError, IngestionError, SourceTimeoutError
from .ratelimit import DEFAULT_MIN_DELAY, RequestQueue
from .records import tle_to_record
from .tle_parser import TLE

logger = logging.getLogger(__name__)

SPACETRACK_BASE = "https://www.space-track.org"
SPACETRACK_LOGIN_URL = f"{SPACETRACK_BASE}/ajaxauth/login"
SPACETRACK_QUERY_URL = f"{SPACETRACK_BASE}/basicspacedata/query"

CELESTRAK_GP_URL = "https://celestrak.org/NORAD/elements/gp.php"

DEFAULT_TIMEOUT = 30.0
CACHE_MAX_AGE_HOURS = 24

USER_AGENT = "orbitrack/0.1 (+https://pypi.org/project/orbitrack/)"

# LEO-heavy groups, most specific first so first-seen metadata wins.
CELESTRAK_GROUPS = (
    "stations",
    "starlink",
    "oneweb",
    "planet",
    "spire",
    "swarm",
    "iridium-NEXT",
    "globalstar",
    "orbcomm",
    "gps-ops",
    "weather",
    "active",
)


class Source:
    """A named provider of raw GP records."""

    name = "source"

    async def fetch_records(self) -> list[dict]:
        raise NotImplementedError


class HTTPSource(Source):
    """Shared plumbing for rate-limited ``requests`` sources."""

    def __init__(
        self,
        min_delay: float = DEFAULT_MIN_DELAY,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
        queue: Optional[RequestQueue] = None,
    ):
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", USER_AGENT)
        self.queue = queue or RequestQueue(min_delay)

    def _send(self, method: str, url: str, **kwargs) -> requests.Response:
        """Issue one blocking request, mapping failures to ingestion errors."""
        logger.debug("%s %s", method, url)
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.Timeout as e:
            raise SourceTimeoutError(
                f"{self.name}: request timed out after {self.timeout}s", self.name
            ) from e
        except requests.RequestException as e:
            raise IngestionError(f"{self.name}: network error: {e}", self.name) from e

        if resp.status_code in (401, 403):
            raise AuthenticationError(
                f"{self.name}: authentication failed (HTTP {resp.status_code})", self.name
            )
        if resp.status_code == 429:
            raise IngestionError(f"{self.name}: rate limit exceeded", self.name)
        try:
            resp.raise_for_status()
        except requests.HTTPError as e:
            raise IngestionError(
                f"{self.name}: request failed (HTTP {resp.status_code})", self.name
            ) from e
        return resp


class SpaceTrackSource(HTTPSource):
    """Authenticated Space-Track GP catalog query.

    Args:
        username: Space-Track login (defaults to ``SPACETRACK_USER``).
        password: Space-Track password (defaults to ``SPACETRACK_PASS``).
        cache_dir: Directory for a 24 h response cache; None disables it.
        max_age_days: Only element sets newer than this are requested.
        limit: Optional cap on the number of records requested.
    """

    name = "spacetrack"

    def __init__(
        self,
        username: Optional[str] = None,
        password: Optional[str] = None,
        cache_dir: Optional[Path] = None,
        max_age_days: int = 30,
        limit: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.username = username or os.environ.get("SPACETRACK_USER", "")
        self.password = password or os.environ.get("SPACETRACK_PASS", "")
        self.cache_dir = Path(cache_dir) if cache_dir else None
        if self.cache_dir:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.max_age_days = max_age_days
        self.limit = limit
        self._authenticated = False

    @property
    def endpoint(self) -> str:
        endpoint = (
            f"class/gp/decay_date/null-val/epoch/>now-{self.max_age_days}/"
            f"orderby/NORAD_CAT_ID asc/"
        )
        if self.limit:
            endpoint += f"limit/{self.limit}/"
        return endpoint + "format/json"

    def _authenticate(self) -> None:
        """Login to Space-Track; the session keeps the cookie."""
        if self._authenticated:
            return

        if not self.username or not self.password:
            raise AuthenticationError(
                "Space-Track credentials required. Set SPACETRACK_USER and "
                "SPACETRACK_PASS environment variables, or pass to constructor.",
                self.name,
            )

        resp = self._send(
            "POST",
            SPACETRACK_LOGIN_URL,
            data={"identity": self.username, "password": self.password},
        )
        if "Login Failed" in resp.text:
            raise AuthenticationError("Space-Track login failed", self.name)

        self._authenticated = True
        logger.info("Authenticated with Space-Track")

    def _cache_file(self) -> Optional[Path]:
        if not self.cache_dir:
            return None
        key = self.endpoint.replace("/", "_").replace(" ", "_").replace(">", "gt")[:200]
        return self.cache_dir / f"{key}.json"

    def _read_cache(self) -> Optional[str]:
        cache_file = self._cache_file()
        if cache_file and cache_file.exists():
            age_hours = (time.time() - cache_file.stat().st_mtime) / 3600
            if age_hours < CACHE_MAX_AGE_HOURS:
                logger.debug("Cache hit: %s", cache_file.name)
                return cache_file.read_text()
        return None

    async def _query(self, url: str) -> requests.Response:
        """GET ``url``, logging in again once if an existing session was rejected."""
        reused = self._authenticated
        if not reused:
            await self.queue.submit(self._authenticate)
        try:
            return await self.queue.submit(self._send, "GET", url)
        except AuthenticationError:
            self._authenticated = False
            if not reused:
                raise
            logger.info("Space-Track session expired, logging in again")

        await self.queue.submit(self._authenticate)
        try:
            return await self.queue.submit(self._send, "GET", url)
        except AuthenticationError:
            self._authenticated = False
            raise

    async def fetch_records(self) -> list[dict]:
        text = self._read_cache()
        if text is None:
            url = f"{SPACETRACK_QUERY_URL}/{self.endpoint}"
            logger.info("Querying: %s", url)
            resp = await self._query(url)
            text = resp.text
            cache_file = self._cache_file()
            if cache_file:
                cache_file.write_text(text)

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise IngestionError("spacetrack: response is not JSON", self.name) from e

        if isinstance(data, dict) and data.get("error"):
            raise IngestionError(f"spacetrack: API error: {data['error']}", self.name)
        if not isinstance(data, list):
            raise IngestionError("spacetrack: unexpected response format", self.name)
        if not data:
            raise IngestionError("spacetrack: empty result", self.name)
        return data


class CelesTrakSource(HTTPSource):
    """Public CelesTrak group feeds in 3LE format, merged by catalog id.

    A failing group is logged and skipped; the source only fails when every
    group fails or the merged result is empty.
    """

    name = "celestrak"

    def __init__(
        self,
        groups: Iterable[str] = CELESTRAK_GROUPS,
        progress: bool = False,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.groups = tuple(groups)
        self.progress = progress

    async def fetch_group(self, group: str) -> list[dict]:
        resp = await self.queue.submit(
            self._send, "GET", CELESTRAK_GP_URL,
            params={"GROUP": group, "FORMAT": "tle"},
        )
        text = resp.text
        if "No GP data found" in text:
            return []
        return [tle_to_record(tle) for tle in TLE.parse_batch(text)]

    async def fetch_records(self) -> list[dict]:
        records: list[dict] = []
        seen: set[int] = set()
        failures: list[IngestionError] = []

        for group in tqdm(self.groups, desc="Fetching groups", disable=not self.progress):
            try:
                group_records = await self.fetch_group(group)
            except IngestionError as e:
                logger.warning("Failed to fetch CelesTrak group %s: %s", group, e)
                failures.append(e)
                continue

            for record in group_records:
                norad_id = record["NORAD_CAT_ID"]
                if norad_id in seen:
                    continue
                seen.add(norad_id)
                records.append(record)

        if failures and len(failures) == len(self.groups):
            if all(isinstance(f, SourceTimeoutError) for f in failures):
                raise SourceTimeoutError("celestrak: every group timed out", self.name, failures)
            raise IngestionError("celestrak: every group failed", self.name, failures)
        if not records:
            raise IngestionError("celestrak: empty result", self.name)

        logger.info("CelesTrak: %d unique records from %d groups", len(records), len(self.groups))
        return records


class StaticSource(Source):
    """Records from a local TLE file or an in-memory list.

    Useful as an offline last resort and in tests.
    """

    name = "static"

    def __init__(
        self,
        records: Optional[list[dict]] = None,
        path: Optional[str | Path] = None,
        name: Optional[str] = None,
    ):
        if records is None and path is None:
            raise ValueError("StaticSource needs records or a path")
        self.records = records
        self.path = Path(path) if path else None
        if name:
            self.name = name

    async def fetch_records(self) -> list[dict]:
        if self.records is not None:
            records = list(self.records)
        else:
            try:
                records = [tle_to_record(t) for t in load_tle_file(self.path)]
            except OSError as e:
                raise IngestionError(f"{self.name}: cannot read {self.path}: {e}", self.name) from e
        if not records:
            raise IngestionError(f"{self.name}: empty result", self.name)
        return records


def load_tle_file(filepath: str | Path) -> list[TLE]:
    """Load TLEs from a local file (2-line or 3-line format)."""
    text = Path(filepath).read_text()
    return TLE.parse_batch(text)


def build_sources(
    priority: Iterable[str],
    min_delay: float = DEFAULT_MIN_DELAY,
    timeout: float = DEFAULT_TIMEOUT,
    progress: bool = False,
) -> list[Source]:
    """Instantiate sources by name, in priority order."""
    factories = {
        "spacetrack": lambda: SpaceTrackSource(min_delay=min_delay, timeout=timeout),
        "celestrak": lambda: CelesTrakSource(
            min_delay=min_delay, timeout=timeout, progress=progress
        ),
    }
    sources = []
    for name in priority:
        if name not in factories:
            raise ValueError(f"Unknown source '{name}'. Choose from: {', '.join(factories)}")
        sources.append(factories[name]())
    return sources
