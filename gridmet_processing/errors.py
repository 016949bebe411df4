"""
Exception types for the GRIDMET processing pipeline.

Per-frame errors (missing band, missing baseline) are caught by the processor
and only drop the affected frame. Run-level errors (unknown jurisdiction,
unavailable store, cancellation) abort the invocation.
"""

from datetime import date
from typing import Optional, Sequence


class GridmetError(Exception):
    """Base class for all pipeline errors."""


class MissingBandError(GridmetError):
    """A required input band is absent from a frame."""

    def __init__(self, band: str, frame_date: Optional[date] = None):
        self.band = band
        self.frame_date = frame_date
        when = f" on {frame_date.isoformat()}" if frame_date else ""
        super().__init__(f"Band '{band}' missing from frame{when}")


class BaselineMissingError(GridmetError):
    """No climatology entry exists for a frame's day of year."""

    def __init__(self, doy: int, frame_date: Optional[date] = None):
        self.doy = doy
        self.frame_date = frame_date
        when = f" (frame {frame_date.isoformat()})" if frame_date else ""
        super().__init__(f"No climatology entry for day of year {doy}{when}")


class UnknownJurisdictionError(GridmetError):
    """The jurisdiction filter matched no regions."""

    def __init__(self, jurisdiction):
        self.jurisdiction = jurisdiction
        super().__init__(f"Jurisdiction '{jurisdiction}' matches no regions")


class TransientStoreError(GridmetError):
    """The raster store is temporarily unavailable."""


class StoreUnavailableError(GridmetError):
    """The raster store stayed unavailable after every retry."""

    def __init__(self, start: date, end: date, bands: Sequence[str], attempts: int):
        self.start = start
        self.end = end
        self.bands = list(bands)
        self.attempts = attempts
        super().__init__(
            f"Raster store unavailable after {attempts} attempts "
            f"(range {start.isoformat()} to {end.isoformat()}, bands {self.bands})"
        )


class PipelineCancelled(GridmetError):
    """The run was aborted between frames."""
