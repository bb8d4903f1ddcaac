"""
Example: Filtering and position updates on synthetic element sets.

This example doesn't require network access or Space-Track credentials. It
generates a small synthetic catalog, loads it through the regular ingestion
path, then runs a few update cycles on a simulated clock while changing the
filter criteria.
"""

import sys
sys.path.insert(0, "src")

import asyncio
from datetime import datetime, timedelta, timezone

from orbitrack.config import TrackerConfig
from orbitrack.sources import StaticSource
from orbitrack.tracker import Tracker

EPOCH = datetime(2024, 6, 1, 6, tzinfo=timezone.utc)


def _checksum(line: str) -> str:
    total = sum(int(c) if c.isdigit() else (1 if c == "-" else 0) for c in line[:68])
    return f"{line[:68]}{total % 10}"


def make_synthetic_record(
    norad_id: int,
    name: str,
    mean_motion: float = 15.058,
    inclination: float = 53.0,
    raan: float = 0.0,
    eccentricity: float = 0.00015,
    mean_anomaly: float = 0.0,
    object_type: str = "PAYLOAD",
) -> dict:
    """Create a GP-style record with a synthetic element set at ``EPOCH``."""
    day = (EPOCH - datetime(EPOCH.year, 1, 1, tzinfo=timezone.utc)).total_seconds() / 86400.0 + 1.0
    line1 = (
        f"1 {norad_id:05d}U 24001A   {EPOCH.year % 100:02d}{day:012.8f} "
        f" .00001200  00000-0  62000-4 0  999 "
    )
    line2 = (
        f"2 {norad_id:05d} {inclination:8.4f} {raan:8.4f} {round(eccentricity * 1e7):07d} "
        f"{90.0:8.4f} {mean_anomaly:8.4f} {mean_motion:11.8f}{1000:5d} "
    )
    return {
        "NORAD_CAT_ID": norad_id,
        "OBJECT_NAME": name,
        "OBJECT_TYPE": object_type,
        "TLE_LINE1": _checksum(line1),
        "TLE_LINE2": _checksum(line2),
    }


def print_view(title: str, view) -> None:
    print(f"\n{title} ({len(view)} objects)")
    print(f"{'NORAD':>6} {'NAME':18s} {'CATEGORY':14s} {'ALT (km)':>9} {'LAT':>7} {'LON':>8}")
    print("-" * 68)
    for obj in view:
        p = obj.position
        print(
            f"{obj.id:>6} {obj.name:18s} {obj.category.value:14s} "
            f"{p.altitude_km:>9.1f} {p.latitude:>7.2f} {p.longitude:>8.2f}"
        )


def main():
    print("=" * 68)
    print("  orbitrack — Offline Tracking Demo")
    print("=" * 68)

    records = [
        # A plane of low constellation satellites
        *(
            make_synthetic_record(
                56000 + i, f"STARLINK-{3000 + i}", raan=15.0, mean_anomaly=i * 30.0
            )
            for i in range(6)
        ),
        make_synthetic_record(56100, "ONEWEB-0101", mean_motion=13.16, inclination=87.9),
        make_synthetic_record(56200, "NOAA 99", mean_motion=14.12, inclination=98.7),
        make_synthetic_record(56300, "NAVSTAR 99", mean_motion=2.0056, inclination=55.0,
                              eccentricity=0.005),
        make_synthetic_record(56400, "COSMOS 9999 DEB", mean_motion=14.6, inclination=74.0,
                              object_type="DEBRIS"),
    ]

    now = [EPOCH]
    config = TrackerConfig(batch_size=4, display_cap=8)
    tracker = Tracker(config, sources=[StaticSource(records, name="synthetic")],
                      clock=lambda: now[0])

    async def run():
        await tracker.load_catalog()
        print(f"\nLoaded {len(tracker.store.catalog)} objects")
        print_view("Initial view, sorted by altitude", tracker.store.view)

        for cycle in range(1, 4):
            now[0] += timedelta(seconds=config.update_interval_s)
            report = await tracker.scheduler.run_cycle()
            print(
                f"\nCycle {cycle} @ {now[0]:%H:%M:%S}: batches {report.batch_sizes}, "
                f"{report.updated} updated, {report.failed} failed"
            )

        tracker.store.update_criteria(categories={"constellation"})
        print_view("Constellation only", tracker.store.view)

        tracker.store.update_criteria(categories=(), altitude_range=(0.0, 1000.0), search="cosmos")
        print_view("Search 'cosmos' below 1000 km", tracker.store.view)

        tracker.store.reset_filters()
        tracker.store.set_display_cap(3)
        print_view("Lowest three", tracker.store.view)

    asyncio.run(run())


if __name__ == "__main__":
    main()
