"""Reactive state store: canonical catalog, criteria and the filtered view.

The store is the single writer for tracked-object state. Every mutation
recomputes the filtered view under one lock and then publishes, in order,
the new catalog (when it changed) and the new view to each subscriber.
Subscribers never see a view that disagrees with the criteria and catalog
that produced it.

Example:
    >>> store = TrackingStore()
    >>> unsubscribe = store.subscribe(my_panel)
    >>> store.set_catalog(objects)
    >>> store.update_criteria(categories={Category.CONSTELLATION})
    >>> unsubscribe()
"""
from __future__ import annotations

import logging
import threading
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Iterable, Iterator, Optional, Protocol

from .errors import IngestionError, OrbitrackError, StoreConsistencyError
from .filtering import apply_filters
from .models import FilterCriteria, PositionUpdate, TrackedObject

logger = logging.getLogger(__name__)

DEFAULT_DISPLAY_CAP = 500


class StoreState(Enum):
    IDLE = "idle"
    REFRESHING = "refreshing"


@dataclass(frozen=True)
class ErrorDescriptor:
    """What subscribers receive through ``on_error``.

    Attributes:
        kind: Exception class name (``IngestionError``, ...).
        message: Human-readable description.
        retryable: Whether retrying the failed operation can help.
        timestamp: When the error was reported.
    """
    kind: str
    message: str
    retryable: bool = True
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_exception(cls, error: BaseException) -> ErrorDescriptor:
        retryable = isinstance(error, IngestionError) or not isinstance(error, OrbitrackError)
        return cls(kind=type(error).__name__, message=str(error), retryable=retryable)


class Subscriber(Protocol):
    """Presentation-layer callbacks. Any of them may be omitted."""

    def on_catalog_changed(self, catalog: tuple[TrackedObject, ...]) -> None: ...

    def on_filtered_view_changed(self, view: tuple[TrackedObject, ...]) -> None: ...

    def on_error(self, error: ErrorDescriptor) -> None: ...


class TrackingStore:
    """Owns the canonical set, the current criteria and the derived view.

    Args:
        criteria: Initial criteria (no constraints by default).
        display_cap: Initial view size limit.
        min_cap: Lower bound for ``set_display_cap``.
        max_cap: Upper bound for ``set_display_cap``.
    """

    def __init__(
        self,
        criteria: Optional[FilterCriteria] = None,
        display_cap: int = DEFAULT_DISPLAY_CAP,
        min_cap: int = 1,
        max_cap: int = 10000,
    ):
        if not 1 <= min_cap <= max_cap:
            raise ValueError("cap bounds must satisfy 1 <= min_cap <= max_cap")
        self.min_cap = min_cap
        self.max_cap = max_cap

        self._lock = threading.RLock()
        self._subscribers: list[Subscriber] = []
        self._catalog: tuple[TrackedObject, ...] = ()
        self._index: dict[str, int] = {}
        self._criteria = criteria or FilterCriteria()
        self._cap = max(min_cap, min(display_cap, max_cap))
        self._view: tuple[TrackedObject, ...] = ()
        self._state = StoreState.IDLE
        self._refreshes = 0
        self._last_error: Optional[ErrorDescriptor] = None
        self._last_update: Optional[datetime] = None

    # ── Read-only views ──

    @property
    def catalog(self) -> tuple[TrackedObject, ...]:
        return self._catalog

    @property
    def view(self) -> tuple[TrackedObject, ...]:
        return self._view

    @property
    def criteria(self) -> FilterCriteria:
        return self._criteria

    @property
    def display_cap(self) -> int:
        return self._cap

    @property
    def state(self) -> StoreState:
        return self._state

    @property
    def last_error(self) -> Optional[ErrorDescriptor]:
        return self._last_error

    @property
    def last_update(self) -> Optional[datetime]:
        return self._last_update

    def get(self, object_id: str) -> Optional[TrackedObject]:
        with self._lock:
            i = self._index.get(object_id)
            return self._catalog[i] if i is not None else None

    # ── Subscriptions ──

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """Register ``subscriber``; returns a callable that unsubscribes it."""
        with self._lock:
            self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            with self._lock:
                if subscriber in self._subscribers:
                    self._subscribers.remove(subscriber)

        return unsubscribe

    def _publish(self, method: str, payload) -> None:
        for subscriber in list(self._subscribers):
            callback = getattr(subscriber, method, None)
            if callback is None:
                continue
            try:
                callback(payload)
            except Exception:
                logger.exception("Subscriber %r failed in %s", subscriber, method)

    # ── Lifecycle ──

    @contextmanager
    def refreshing(self) -> Iterator[None]:
        """Mark an ingestion or update cycle in flight (Idle -> Refreshing)."""
        with self._lock:
            self._refreshes += 1
            self._state = StoreState.REFRESHING
        try:
            yield
        finally:
            with self._lock:
                self._refreshes -= 1
                if self._refreshes == 0:
                    self._state = StoreState.IDLE

    # ── Mutations ──

    def set_catalog(self, objects: Iterable[TrackedObject]) -> bool:
        """Replace the canonical set and recompute the view.

        A structurally invalid catalog is rejected: the error is logged and
        reported, and the previous catalog stays in place.

        Returns:
            True if the catalog was replaced.
        """
        with self._lock:
            try:
                catalog = self._check_catalog(objects)
            except StoreConsistencyError as e:
                logger.error("Rejected catalog: %s", e)
                self._report(ErrorDescriptor.from_exception(e))
                return False

            self._catalog = catalog
            self._index = {obj.id: i for i, obj in enumerate(catalog)}
            self._last_error = None
            self._commit(catalog_changed=True)
            logger.debug("Catalog set: %d objects, %d in view", len(catalog), len(self._view))
            return True

    def apply_position_updates(self, updates: Iterable[PositionUpdate]) -> int:
        """Merge position updates by id and recompute the view.

        Unknown ids, invalid positions and updates older than the current
        position are ignored.

        Returns:
            Number of objects whose position changed.
        """
        with self._lock:
            catalog = list(self._catalog)
            applied = 0
            for update in updates:
                i = self._index.get(update.id)
                if i is None:
                    continue
                current = catalog[i]
                if update.position.timestamp < current.position.timestamp:
                    continue
                if not update.position.is_valid():
                    logger.debug("Ignoring invalid position for %s", update.id)
                    continue
                catalog[i] = current.with_position(update.position)
                applied += 1

            if applied:
                self._catalog = tuple(catalog)
                self._commit(catalog_changed=True)
            return applied

    def update_criteria(self, **partial) -> FilterCriteria:
        """Merge ``partial`` into the current criteria and recompute the view."""
        with self._lock:
            self._criteria = self._criteria.merge(**partial)
            self._commit(catalog_changed=False)
            return self._criteria

    def set_criteria(self, criteria: FilterCriteria) -> None:
        """Replace the criteria wholesale."""
        with self._lock:
            self._criteria = criteria
            self._commit(catalog_changed=False)

    def reset_filters(self) -> None:
        self.set_criteria(FilterCriteria())

    def set_display_cap(self, n: int) -> int:
        """Clamp ``n`` to [min_cap, catalog size] (and max_cap), recompute the view.

        Returns:
            The cap actually applied.
        """
        with self._lock:
            upper = max(self.min_cap, min(self.max_cap, len(self._catalog)))
            self._cap = max(self.min_cap, min(int(n), upper))
            self._commit(catalog_changed=False)
            return self._cap

    def report_error(self, error: BaseException | ErrorDescriptor) -> None:
        """Record a failure and publish it. Catalog and view are untouched."""
        descriptor = (
            error if isinstance(error, ErrorDescriptor)
            else ErrorDescriptor.from_exception(error)
        )
        with self._lock:
            self._report(descriptor)

    # ── Internals ──

    def _report(self, descriptor: ErrorDescriptor) -> None:
        self._last_error = descriptor
        self._publish("on_error", descriptor)

    def _commit(self, catalog_changed: bool) -> None:
        """Recompute the view from current state and publish. Lock held."""
        self._view = apply_filters(self._catalog, self._criteria, self._cap)
        self._last_update = datetime.now(timezone.utc)
        if catalog_changed:
            self._publish("on_catalog_changed", self._catalog)
        self._publish("on_filtered_view_changed", self._view)

    @staticmethod
    def _check_catalog(objects: Iterable[TrackedObject]) -> tuple[TrackedObject, ...]:
        if objects is None or isinstance(objects, (str, bytes, dict)):
            raise StoreConsistencyError("catalog must be a sequence of TrackedObject")
        catalog = tuple(objects)
        bad = [o for o in catalog if not isinstance(o, TrackedObject)]
        if bad:
            raise StoreConsistencyError(
                f"catalog contains {len(bad)} entries that are not TrackedObject"
            )
        counts = Counter(o.id for o in catalog)
        duplicates = sorted(i for i, n in counts.items() if n > 1)
        if duplicates:
            raise StoreConsistencyError(f"duplicate ids in catalog: {', '.join(duplicates[:5])}")
        return catalog
