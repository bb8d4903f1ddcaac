"""orbitrack — real-time orbital tracking and filtering engine.

Ingest orbital element sets from Space-Track and CelesTrak, keep thousands of
positions current with SGP4 without starving the event loop, and serve a
bounded, criteria-matched, altitude-sorted view to subscribers.

Modules:
    tle_parser:  Parse two-line element sets and derive orbit geometry.
    models:      Tracked objects, positions and filter criteria.
    propagator:  SGP4 propagation to geodetic position, speed and heading.
    ratelimit:   Serialized request queue with a minimum delay.
    sources:     Space-Track, CelesTrak and local-file element sources.
    records:     Parse-and-validate boundary for raw GP records.
    ingestion:   Multi-source catalog ingestion with fallback and retry.
    filtering:   Filter/query engine producing the capped view.
    store:       Reactive state store with publish/subscribe.
    scheduler:   Batched, cancellable position update task.
    tracker:     Context object wiring the pipeline together.
    config:      Tunables and presets.
    cli:         Command-line interface.

Example:
    >>> import asyncio
    >>> from orbitrack.config import TrackerConfig
    >>> from orbitrack.tracker import Tracker
    >>>
    >>> async def main():
    ...     async with Tracker(TrackerConfig()) as tracker:
    ...         tracker.store.update_criteria(search="starlink")
    ...         await asyncio.sleep(60)
    ...         print(len(tracker.store.view))
"""

__version__ = "0.1.0"
