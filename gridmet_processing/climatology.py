"""
Day-of-year climatology.

Builds, for every calendar day of year, the per-pixel mean and sample standard
deviation of each derived band across all historical years. The statistics
are accumulated in a single streaming pass (Welford's update) and shards can
be merged (Chan et al.), so the work parallelizes as a reduce keyed by DOY.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, Iterator, List, Optional

import numpy as np
import xarray as xr

from .errors import BaselineMissingError
from .frames import GRID_DIMS, RasterFrame, day_of_year

logger = logging.getLogger(__name__)

MIN_YEARS_FOR_STDDEV = 2


@dataclass(frozen=True, eq=False)
class ClimatologyEntry:
    """Baseline for one day of year: per-band mean, stddev and year count."""
    doy: int
    mean: xr.Dataset
    std: xr.Dataset
    count: xr.Dataset

    @property
    def band_names(self) -> List[str]:
        return list(self.mean.data_vars)


@dataclass
class _BandStats:
    n: np.ndarray
    mean: np.ndarray
    m2: np.ndarray

    @classmethod
    def empty(cls, shape) -> '_BandStats':
        return cls(np.zeros(shape, dtype=np.int64), np.zeros(shape), np.zeros(shape))

    def add(self, values: np.ndarray) -> None:
        valid = np.isfinite(values)
        x = np.where(valid, values, 0.0)
        self.n = self.n + valid
        delta = np.where(valid, x - self.mean, 0.0)
        self.mean = self.mean + np.where(valid, delta / np.maximum(self.n, 1), 0.0)
        self.m2 = self.m2 + np.where(valid, delta * (x - self.mean), 0.0)

    def merge(self, other: '_BandStats') -> '_BandStats':
        n = self.n + other.n
        safe_n = np.maximum(n, 1)
        delta = other.mean - self.mean
        mean = self.mean + delta * other.n / safe_n
        m2 = self.m2 + other.m2 + delta ** 2 * self.n * other.n / safe_n
        return _BandStats(n, mean, m2)

    def finalize(self):
        with np.errstate(invalid='ignore', divide='ignore'):
            mean = np.where(self.n > 0, self.mean, np.nan)
            variance = np.maximum(self.m2, 0.0) / (self.n - 1)
            std = np.where(self.n >= MIN_YEARS_FOR_STDDEV, np.sqrt(variance), np.nan)
        return mean, std, self.n


@dataclass
class _DoyStats:
    lat: np.ndarray
    lon: np.ndarray
    bands: Dict[str, _BandStats] = field(default_factory=dict)

    def same_grid(self, lat: np.ndarray, lon: np.ndarray) -> bool:
        return (lat.shape == self.lat.shape and lon.shape == self.lon.shape
                and np.allclose(lat, self.lat) and np.allclose(lon, self.lon))


class ClimatologyAccumulator:
    """Running per-(DOY, band, pixel) count, mean and sum of squared deviations."""

    def __init__(self):
        self._stats: Dict[int, _DoyStats] = {}
        self.frames_seen = 0

    def add(self, frame: RasterFrame) -> None:
        lat = frame.data['lat'].values
        lon = frame.data['lon'].values
        doy = frame.doy
        stats = self._stats.get(doy)
        if stats is None:
            stats = self._stats[doy] = _DoyStats(lat, lon)
        elif not stats.same_grid(lat, lon):
            raise ValueError(f"Frame {frame.timestamp} is on a different grid than earlier DOY {doy} frames")

        shape = (lat.size, lon.size)
        for band, values in frame.bands.items():
            band_stats = stats.bands.get(band)
            if band_stats is None:
                band_stats = stats.bands[band] = _BandStats.empty(shape)
            band_stats.add(np.asarray(values, dtype=float))
        self.frames_seen += 1

    def add_all(self, frames: Iterable[RasterFrame]) -> 'ClimatologyAccumulator':
        for frame in frames:
            self.add(frame)
        return self

    def merge(self, other: 'ClimatologyAccumulator') -> 'ClimatologyAccumulator':
        """Combine two accumulators into a new one."""
        merged = ClimatologyAccumulator()
        merged.frames_seen = self.frames_seen + other.frames_seen
        for doy in set(self._stats) | set(other._stats):
            mine, theirs = self._stats.get(doy), other._stats.get(doy)
            if mine is None or theirs is None:
                merged._stats[doy] = mine or theirs
                continue
            if not mine.same_grid(theirs.lat, theirs.lon):
                raise ValueError(f"Cannot merge DOY {doy} statistics from different grids")
            combined = _DoyStats(mine.lat, mine.lon)
            for band in set(mine.bands) | set(theirs.bands):
                a, b = mine.bands.get(band), theirs.bands.get(band)
                combined.bands[band] = a.merge(b) if a is not None and b is not None else (a or b)
            merged._stats[doy] = combined
        return merged

    def finalize(self) -> 'Climatology':
        entries = {}
        for doy, stats in self._stats.items():
            coords = {'lat': stats.lat, 'lon': stats.lon}
            means, stds, counts = {}, {}, {}
            for band, band_stats in stats.bands.items():
                mean, std, n = band_stats.finalize()
                means[band] = (GRID_DIMS, mean)
                stds[band] = (GRID_DIMS, std)
                counts[band] = (GRID_DIMS, n)
            entries[doy] = ClimatologyEntry(
                doy=doy,
                mean=xr.Dataset(means, coords=coords, attrs={'doy': doy, 'statistic': 'mean'}),
                std=xr.Dataset(stds, coords=coords, attrs={'doy': doy, 'statistic': 'stddev', 'ddof': 1}),
                count=xr.Dataset(counts, coords=coords, attrs={'doy': doy, 'statistic': 'count'}),
            )
        return Climatology(entries)


class Climatology(Mapping):
    """Immutable mapping of day of year to ClimatologyEntry."""

    def __init__(self, entries: Dict[int, ClimatologyEntry]):
        self._entries = dict(entries)

    def __getitem__(self, doy: int) -> ClimatologyEntry:
        return self._entries[doy]

    def __iter__(self) -> Iterator[int]:
        return iter(sorted(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    def entry_for(self, day: date) -> ClimatologyEntry:
        """
        Baseline for the day of year of a date.

        Raises:
            BaselineMissingError: No historical frame shares that day of year
        """
        doy = day_of_year(day)
        entry = self._entries.get(doy)
        if entry is None:
            raise BaselineMissingError(doy, day)
        return entry

    def __repr__(self) -> str:
        return f"Climatology({len(self)} days of year)"


class ClimatologyBuilder:
    """Builds a Climatology from the complete historical series of derived frames."""

    def __init__(self, n_shards: int = 1):
        self.n_shards = max(1, n_shards)

    def shard(self, frames: Iterable[RasterFrame]) -> List[List[RasterFrame]]:
        """Split frames into shards by DOY; one DOY always lands in one shard."""
        shards = [[] for _ in range(self.n_shards)]
        for frame in frames:
            shards[frame.doy % self.n_shards].append(frame)
        return [s for s in shards if s]

    @staticmethod
    def accumulate(frames: Iterable[RasterFrame]) -> ClimatologyAccumulator:
        return ClimatologyAccumulator().add_all(frames)

    @staticmethod
    def combine(accumulators: Iterable[ClimatologyAccumulator]) -> Climatology:
        total: Optional[ClimatologyAccumulator] = None
        for acc in accumulators:
            total = acc if total is None else total.merge(acc)
        if total is None:
            total = ClimatologyAccumulator()
        climatology = total.finalize()
        logger.info(f"Built climatology for {len(climatology)} days of year "
                    f"from {total.frames_seen} frames")
        return climatology

    def build(self, frames: Iterable[RasterFrame]) -> Climatology:
        return self.combine(self.accumulate(shard) for shard in self.shard(frames))
