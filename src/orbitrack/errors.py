"""Exception hierarchy for orbitrack.

Per-object failures (``PropagationError``, ``ValidationError``) are contained
where they occur. Per-source failures (``IngestionError`` and subclasses) feed
the ingestion fallback chain. ``StoreConsistencyError`` signals a defect.
"""
from __future__ import annotations

from typing import Optional


class OrbitrackError(Exception):
    """Base class for every error raised by orbitrack."""


class IngestionError(OrbitrackError):
    """A source could not deliver a usable catalog.

    Attributes:
        source: Name of the failing source, or None for an aggregated error.
        failures: Per-source errors when every source was exhausted.
    """

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        failures: Optional[list[IngestionError]] = None,
    ):
        super().__init__(message)
        self.source = source
        self.failures = list(failures or [])


class AuthenticationError(IngestionError):
    """Credentials were missing or rejected by the source."""


class SourceTimeoutError(IngestionError, TimeoutError):
    """A request to a source did not complete within the configured timeout."""


class PropagationError(OrbitrackError):
    """The element set could not be propagated to a finite position."""


class ValidationError(OrbitrackError):
    """A raw record failed the ingestion schema or range checks."""

    def __init__(self, reason: str, record_id: Optional[str] = None):
        label = f"record {record_id}: " if record_id else ""
        super().__init__(f"{label}{reason}")
        self.reason = reason
        self.record_id = record_id


class StoreConsistencyError(OrbitrackError):
    """The store detected an internal inconsistency. Should be unreachable."""
