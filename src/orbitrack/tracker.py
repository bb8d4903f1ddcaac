"""Tracker: one store, one ingestion client, one scheduler, wired together.

The tracker is created once by the host and passed to whatever needs the
store. It performs the initial catalog load, runs the position scheduler and
re-fetches the full catalog every ``catalog_refresh_s`` seconds. A failed
fetch is reported through the store and never clears the last good catalog.

Example:
    >>> async with Tracker(TrackerConfig()) as tracker:
    ...     tracker.store.subscribe(panel)
    ...     await asyncio.sleep(60)
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional, Sequence

from .config import TrackerConfig
from .errors import IngestionError
from .ingestion import IngestionClient, utcnow
from .propagator import propagate_strict
from .scheduler import Propagator, UpdateScheduler
from .sources import Source, build_sources
from .store import TrackingStore

logger = logging.getLogger(__name__)


class Tracker:
    """Application context owning the tracking pipeline.

    Args:
        config: Tunables; defaults to ``TrackerConfig()``.
        sources: Sources in priority order. Built from
            ``config.source_priority`` when omitted.
        store: Existing store to drive; a new one is created when omitted.
        propagate: Propagation function handed to the scheduler.
        clock: Time source shared by ingestion and the scheduler.
    """

    def __init__(
        self,
        config: Optional[TrackerConfig] = None,
        sources: Optional[Sequence[Source]] = None,
        store: Optional[TrackingStore] = None,
        propagate: Propagator = propagate_strict,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config or TrackerConfig()
        cfg = self.config

        if sources is None:
            sources = build_sources(
                cfg.source_priority,
                min_delay=cfg.rate_limit_delay_s,
                timeout=cfg.request_timeout_s,
            )
        self.store = store or TrackingStore(
            display_cap=cfg.display_cap,
            min_cap=cfg.min_display_cap,
            max_cap=cfg.max_display_cap,
        )
        self.client = IngestionClient(
            sources,
            max_retries=cfg.max_retries,
            retry_backoff=cfg.retry_backoff_s,
            clock=clock,
        )
        self.scheduler = UpdateScheduler(
            self.store,
            interval=cfg.update_interval_s,
            batch_size=cfg.batch_size,
            propagate=propagate,
            clock=clock,
        )
        self._refresh_task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    async def load_catalog(self) -> bool:
        """Fetch the catalog and hand it to the store.

        Returns:
            True if a new catalog was installed. On failure the error is
            reported to the store's subscribers and the previous catalog
            (possibly empty) stays in place.
        """
        with self.store.refreshing():
            try:
                objects = await self.client.fetch_catalog()
            except IngestionError as e:
                logger.error("Catalog load failed: %s", e)
                self.store.report_error(e)
                return False
            return self.store.set_catalog(objects)

    async def start(self) -> None:
        """Load the catalog, then start position updates and catalog refresh."""
        await self.load_catalog()
        self._stop_event = asyncio.Event()
        self.scheduler.start()
        self._refresh_task = asyncio.get_running_loop().create_task(
            self._refresh_loop(), name="orbitrack-refresh"
        )

    async def stop(self) -> None:
        """Stop both background tasks and wait for them. Idempotent."""
        self.scheduler.stop()
        if self._stop_event is not None:
            self._stop_event.set()
        await self.scheduler.join()
        if self._refresh_task is not None:
            await self._refresh_task
            self._refresh_task = None

    async def _refresh_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self.config.catalog_refresh_s
                )
            except asyncio.TimeoutError:
                logger.info("Refreshing catalog")
                await self.load_catalog()

    async def __aenter__(self) -> Tracker:
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.stop()
