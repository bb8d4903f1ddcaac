#!/usr/bin/env python3
"""
orbitrack Example: Follow the live LEO catalog for a few minutes.

Space-Track is tried first and needs credentials:
    export SPACETRACK_USER="your@email.com"
    export SPACETRACK_PASS="your_password"

Register free at: https://www.space-track.org/auth/createAccount

Without credentials the tracker falls back to CelesTrak's public feeds.
"""
import sys
sys.path.insert(0, "src")

import asyncio
import logging

from orbitrack.config import TrackerConfig
from orbitrack.tracker import Tracker


class ConsolePanel:
    """Minimal subscriber printing what a UI panel would render."""

    def on_catalog_changed(self, catalog):
        print(f"  catalog: {len(catalog)} objects")

    def on_filtered_view_changed(self, view):
        if not view:
            print("  view: empty")
            return
        lowest = view[0]
        print(
            f"  view: {len(view)} objects, lowest {lowest.name} "
            f"at {lowest.altitude_km:.0f} km ({lowest.position.latitude:+.1f}, "
            f"{lowest.position.longitude:+.1f})"
        )

    def on_error(self, error):
        print(f"  error: {error.kind}: {error.message}")


async def follow(minutes: float) -> None:
    config = TrackerConfig.from_env(base=TrackerConfig.for_low_power())
    tracker = Tracker(config)
    unsubscribe = tracker.store.subscribe(ConsolePanel())

    print(f"\nLoading catalog from {', '.join(config.source_priority)}...")
    async with tracker:
        tracker.store.update_criteria(categories={"constellation", "space-station"},
                                      altitude_range=(200.0, 2000.0))
        await asyncio.sleep(minutes * 60)
    unsubscribe()

    report = tracker.scheduler.last_report
    if report:
        print(f"\nLast cycle: batches {report.batch_sizes}, {report.failed} failed")


def main():
    print("=" * 65)
    print("  orbitrack — Live LEO Tracking")
    print("=" * 65)
    logging.basicConfig(level=logging.INFO, format="%(name)s — %(message)s")
    asyncio.run(follow(minutes=2))


if __name__ == "__main__":
    main()
