"""Catalog ingestion with ordered source fallback.

``IngestionClient.fetch_catalog`` walks the configured sources in priority
order. A source that times out is retried with exponential backoff; any other
source failure (network, authentication, empty or fully invalid result) moves
on to the next source. Only when every source is exhausted does the client
raise a single ``IngestionError`` listing each source's failure.

Example:
    >>> client = IngestionClient([SpaceTrackSource(), CelesTrakSource()])
    >>> objects = asyncio.run(client.fetch_catalog())
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Sequence

from .errors import IngestionError, SourceTimeoutError
from .models import TrackedObject
from .records import parse_records
from .sources import Source

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IngestionClient:
    """Fetch, validate and de-duplicate the orbital catalog.

    Args:
        sources: Sources in priority order.
        max_retries: Attempts per source when it times out.
        retry_backoff: Base delay (seconds); attempt ``n`` waits
            ``retry_backoff * 2**n`` before retrying.
        clock: Time used to position newly ingested objects.
        sleep: Coroutine used for backoff waits, injectable for tests.
    """

    def __init__(
        self,
        sources: Sequence[Source],
        max_retries: int = 3,
        retry_backoff: float = 1.0,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if not sources:
            raise ValueError("IngestionClient needs at least one source")
        self.sources = list(sources)
        self.max_retries = max(1, max_retries)
        self.retry_backoff = retry_backoff
        self._clock = clock
        self._sleep = sleep

    async def fetch_catalog(self) -> list[TrackedObject]:
        """Return the validated catalog from the first source that delivers one.

        Raises:
            IngestionError: When every source failed. ``failures`` holds the
                per-source errors in the order they were tried.
        """
        failures: list[IngestionError] = []

        for source in self.sources:
            try:
                objects = await self._fetch_from(source)
            except IngestionError as e:
                logger.warning("Source %s failed: %s", source.name, e)
                failures.append(e)
                continue

            logger.info("Loaded %d objects from %s", len(objects), source.name)
            return objects

        summary = "; ".join(str(f) for f in failures)
        raise IngestionError(
            f"All {len(self.sources)} sources failed: {summary}", failures=failures
        )

    async def _fetch_from(self, source: Source) -> list[TrackedObject]:
        raws = await self._fetch_with_retry(source)
        objects = await asyncio.to_thread(parse_records, raws, self._clock())
        if not objects:
            raise IngestionError(
                f"{source.name}: no valid records among {len(raws)}", source.name
            )
        return objects

    async def _fetch_with_retry(self, source: Source) -> list[dict]:
        for attempt in range(self.max_retries):
            try:
                return await source.fetch_records()
            except SourceTimeoutError as e:
                if attempt + 1 >= self.max_retries:
                    raise
                delay = self.retry_backoff * 2**attempt
                logger.info(
                    "%s timed out (attempt %d/%d), retrying in %.1fs: %s",
                    source.name, attempt + 1, self.max_retries, delay, e,
                )
                await self._sleep(delay)
        raise IngestionError(f"{source.name}: retries exhausted", source.name)
