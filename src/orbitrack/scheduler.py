"""Periodic position updates in bounded, cooperative batches.

One cycle snapshots the canonical set, propagates it ``batch_size`` objects
at a time and hands control back to the event loop after every batch. The
new positions reach the store in a single ``apply_position_updates`` call at
the end of the cycle, so subscribers see one consistent view per cycle.

Cycles never overlap: the next one is scheduled only after the previous one
finished and ``interval`` seconds have passed.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from .errors import PropagationError
from .ingestion import utcnow
from .models import Position, PositionUpdate
from .propagator import PropagationResult, propagate_strict
from .store import TrackingStore
from .tle_parser import ElementSet

logger = logging.getLogger(__name__)

Propagator = Callable[[ElementSet, datetime], PropagationResult]


@dataclass
class CycleReport:
    """Outcome of one update cycle.

    Attributes:
        batch_sizes: Objects processed per batch, in order.
        visited: Objects propagated or attempted.
        updated: Positions accepted by the store.
        failed: Objects whose propagation failed (prior position kept).
        yields: Times control was handed back to the event loop.
        aborted: True if ``stop()`` interrupted the cycle before its write.
    """
    batch_sizes: list[int] = field(default_factory=list)
    visited: int = 0
    updated: int = 0
    failed: int = 0
    yields: int = 0
    aborted: bool = False


class UpdateScheduler:
    """Cancellable repeating task that keeps positions current.

    Args:
        store: Store to read the catalog from and write positions to.
        interval: Seconds between the end of one cycle and the next.
        batch_size: Objects propagated between two yields.
        propagate: Propagation function; must raise ``PropagationError``
            on failure so the prior position can be retained.
        clock: Time source for the propagation epoch.

    Example:
        >>> scheduler = UpdateScheduler(store, interval=15, batch_size=50)
        >>> scheduler.start()
        >>> ...
        >>> scheduler.stop()
        >>> await scheduler.join()
    """

    def __init__(
        self,
        store: TrackingStore,
        interval: float = 15.0,
        batch_size: int = 50,
        propagate: Propagator = propagate_strict,
        clock: Callable[[], datetime] = utcnow,
    ):
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self.store = store
        self.interval = interval
        self.batch_size = batch_size
        self._propagate = propagate
        self._clock = clock
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._stopped = False
        self.cycles = 0
        self.last_report: Optional[CycleReport] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Spawn the update task on the running event loop.

        After ``stop()`` this starts a fresh task even if the previous one is
        still finishing; the new task waits for it before its first cycle.
        """
        if self.running and not self._stopped:
            return
        previous = self._task if self.running else None
        self._stopped = False
        self._stop_event = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(
            self._run(self._stop_event, previous), name="orbitrack-updates"
        )
        logger.info(
            "Scheduler started: every %.1fs, batches of %d", self.interval, self.batch_size
        )

    def stop(self) -> None:
        """Prevent further cycles and store writes. Safe to call repeatedly."""
        if self._stopped:
            return
        self._stopped = True
        if self._stop_event is not None:
            self._stop_event.set()
        logger.info("Scheduler stopping after %d cycles", self.cycles)

    async def join(self) -> None:
        """Wait for the update task to finish after ``stop()``."""
        if self._task is not None:
            await self._task

    async def _run(
        self, stop_event: asyncio.Event, previous: Optional[asyncio.Task]
    ) -> None:
        if previous is not None:
            await previous
        while not stop_event.is_set():
            try:
                await self._cycle(stop_event)
            except Exception:
                logger.exception("Update cycle failed")
            if stop_event.is_set():
                break
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    async def run_cycle(self) -> CycleReport:
        """Propagate the whole catalog once and write the results.

        Returns:
            Counters describing the cycle.
        """
        return await self._cycle(None)

    async def _cycle(self, stop_event: Optional[asyncio.Event]) -> CycleReport:
        def halted() -> bool:
            return self._stopped or (stop_event is not None and stop_event.is_set())

        report = CycleReport()
        snapshot = self.store.catalog
        at = self._clock()
        updates: list[PositionUpdate] = []

        with self.store.refreshing():
            for start in range(0, len(snapshot), self.batch_size):
                batch = snapshot[start:start + self.batch_size]
                for obj in batch:
                    report.visited += 1
                    try:
                        result = self._propagate(obj.elements, at)
                    except PropagationError as e:
                        report.failed += 1
                        logger.debug("Propagation failed for %s (%s): %s", obj.id, obj.name, e)
                        continue
                    updates.append(PositionUpdate(obj.id, _to_position(result, at)))
                report.batch_sizes.append(len(batch))

                await asyncio.sleep(0)
                report.yields += 1
                if halted():
                    report.aborted = True
                    logger.debug("Cycle aborted after %d objects", report.visited)
                    break

            if not report.aborted and not halted():
                report.updated = self.store.apply_position_updates(updates)

        self.cycles += 1
        self.last_report = report
        logger.debug(
            "Cycle %d: %d visited, %d updated, %d failed in %d batches",
            self.cycles, report.visited, report.updated, report.failed,
            len(report.batch_sizes),
        )
        return report


def _to_position(result: PropagationResult, at: datetime) -> Position:
    return Position(
        latitude=result.latitude,
        longitude=result.longitude,
        altitude_km=result.altitude_km,
        timestamp=at,
        velocity_km_s=result.velocity_km_s,
        heading_deg=result.heading_deg,
    )
