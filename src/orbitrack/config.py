"""Runtime configuration for the tracker.

All tunables are injectable; the defaults below are the documented ones.
``TrackerConfig.from_env`` layers ``ORBITRACK_*`` environment overrides on top
of a base config through ``TrackerSettings``, the same way the Space-Track
credentials come from ``SPACETRACK_USER`` / ``SPACETRACK_PASS``.
"""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class TrackerConfig(BaseModel):
    """Tunables for ingestion, scheduling and the filtered view.

    Attributes:
        update_interval_s: Seconds between position update cycles.
        batch_size: Objects propagated per batch before yielding.
        catalog_refresh_s: Seconds between full catalog re-fetches.
        rate_limit_delay_s: Minimum seconds between requests to one source.
        request_timeout_s: Per-request timeout.
        max_retries: Attempts per source when requests time out.
        retry_backoff_s: Base delay for exponential backoff between retries.
        display_cap: Initial maximum size of the filtered view.
        min_display_cap: Lower clamp for ``set_display_cap``.
        max_display_cap: Upper clamp for ``set_display_cap``.
        source_priority: Source names, tried in order.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    update_interval_s: float = Field(15.0, gt=0)
    batch_size: int = Field(50, ge=1)
    catalog_refresh_s: float = Field(600.0, gt=0)
    rate_limit_delay_s: float = Field(2.0, ge=0)
    request_timeout_s: float = Field(30.0, gt=0)
    max_retries: int = Field(3, ge=1)
    retry_backoff_s: float = Field(1.0, ge=0)
    display_cap: int = Field(500, ge=1)
    min_display_cap: int = Field(1, ge=1)
    max_display_cap: int = Field(10000, ge=1)
    source_priority: tuple[str, ...] = ("spacetrack", "celestrak")

    @field_validator("source_priority", mode="before")
    @classmethod
    def _split_priority(cls, value):
        if isinstance(value, str):
            return _split_names(value)
        return value

    @model_validator(mode="after")
    def _check_cap_bounds(self) -> TrackerConfig:
        if self.min_display_cap > self.max_display_cap:
            raise ValueError("display cap bounds must satisfy 1 <= min <= max")
        if not self.min_display_cap <= self.display_cap <= self.max_display_cap:
            raise ValueError("display_cap must lie within its bounds")
        return self

    @classmethod
    def for_low_power(cls) -> TrackerConfig:
        """Lighter settings for weak hosts: smaller view, slower cadence."""
        return cls(
            update_interval_s=20.0,
            batch_size=25,
            display_cap=250,
        )

    @classmethod
    def from_env(cls, base: Optional[TrackerConfig] = None) -> TrackerConfig:
        """Apply ``ORBITRACK_<FIELD>`` environment overrides to ``base``.

        ``ORBITRACK_SOURCE_PRIORITY`` is a comma-separated list.

        Raises:
            pydantic.ValidationError: If an override is malformed or out of range.
        """
        return (base or cls()).with_overrides(**TrackerSettings().overrides())

    def with_overrides(self, **changes) -> TrackerConfig:
        """Return a validated copy with ``changes`` applied."""
        if not changes:
            return self
        return type(self)(**{**self.model_dump(), **changes})


class TrackerSettings(BaseSettings):
    """``ORBITRACK_*`` environment variables; unset fields stay ``None``."""
    model_config = SettingsConfigDict(env_prefix="ORBITRACK_", extra="ignore")

    update_interval_s: Optional[float] = Field(None, gt=0)
    batch_size: Optional[int] = Field(None, ge=1)
    catalog_refresh_s: Optional[float] = Field(None, gt=0)
    rate_limit_delay_s: Optional[float] = Field(None, ge=0)
    request_timeout_s: Optional[float] = Field(None, gt=0)
    max_retries: Optional[int] = Field(None, ge=1)
    retry_backoff_s: Optional[float] = Field(None, ge=0)
    display_cap: Optional[int] = Field(None, ge=1)
    min_display_cap: Optional[int] = Field(None, ge=1)
    max_display_cap: Optional[int] = Field(None, ge=1)
    source_priority: Optional[str] = None

    def overrides(self) -> dict:
        """Fields set in the environment, ready for ``TrackerConfig``."""
        changes = self.model_dump(exclude_none=True)
        if "source_priority" in changes:
            changes["source_priority"] = _split_names(changes["source_priority"])
        return changes


def _split_names(text: str) -> tuple[str, ...]:
    return tuple(s.strip() for s in text.split(",") if s.strip())
