"""
Raster frame data model.

A RasterFrame is one day of gridded data: a date plus an xarray Dataset whose
data variables (bands) all live on the same 2-D (lat, lon) grid.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd
import xarray as xr
from affine import Affine
from rasterio.transform import from_bounds

from .errors import MissingBandError

logger = logging.getLogger(__name__)

GRID_DIMS = ('lat', 'lon')


def day_of_year(day: date) -> int:
    """1-based ordinal day within the calendar year (1..366)."""
    return day.timetuple().tm_yday


def to_date(value) -> date:
    """Coerce a date-like value (str, datetime64, Timestamp, date) to a date."""
    if isinstance(value, date) and not isinstance(value, pd.Timestamp):
        return value if type(value) is date else value.date()
    return pd.Timestamp(value).date()


def _axis_resolution(centers: np.ndarray) -> Optional[float]:
    """Spacing of regularly spaced centers; None for a single center."""
    if centers.size < 2:
        return None
    steps = np.diff(centers)
    step = abs(float(steps[0]))
    if step == 0 or not np.allclose(np.abs(steps), step, rtol=1e-6, atol=1e-9):
        raise ValueError("Grid coordinates must be regularly spaced")
    if not (np.all(steps > 0) or np.all(steps < 0)):
        raise ValueError("Grid coordinates must be monotonic")
    return step


@dataclass(frozen=True)
class GridSpec:
    """Geometry of a regular lat/lon grid."""
    width: int
    height: int
    x_resolution: float
    y_resolution: float
    transform: Affine
    north_up: bool

    @classmethod
    def from_coords(cls, lon, lat, default_resolution: float = 1.0) -> 'GridSpec':
        """
        Grid geometry from pixel-center coordinates.

        An axis with a single center takes the spacing of the other axis;
        default_resolution is used only for a single-pixel grid.
        """
        lon = np.asarray(lon, dtype=float)
        lat = np.asarray(lat, dtype=float)
        dx = _axis_resolution(lon)
        dy = _axis_resolution(lat)
        if dx is None:
            dx = dy if dy is not None else default_resolution
        if dy is None:
            dy = dx
        if lon.size > 1 and lon[1] < lon[0]:
            raise ValueError("Longitude must increase along the lon axis")

        # Pixel edges sit half a cell outside the outermost centers
        west = float(lon.min()) - dx / 2
        east = float(lon.max()) + dx / 2
        south = float(lat.min()) - dy / 2
        north = float(lat.max()) + dy / 2
        transform = from_bounds(west, south, east, north, lon.size, lat.size)

        north_up = lat.size < 2 or lat[1] < lat[0]
        return cls(lon.size, lat.size, dx, dy, transform, north_up)

    def array_row(self, raster_row: np.ndarray) -> np.ndarray:
        """Map north-up raster rows to rows of the underlying (lat, lon) array."""
        if self.north_up:
            return raster_row
        return self.height - 1 - raster_row

    def key(self) -> Tuple:
        return (self.width, self.height, tuple(round(v, 9) for v in self.transform[:6]), self.north_up)


@dataclass(frozen=True, eq=False)
class RasterFrame:
    """One day of multi-band gridded data."""
    timestamp: date
    data: xr.Dataset

    def __post_init__(self):
        for name, band in self.data.data_vars.items():
            if tuple(band.dims) != GRID_DIMS:
                raise ValueError(f"Band '{name}' has dims {band.dims}, expected {GRID_DIMS}")

    @property
    def doy(self) -> int:
        return day_of_year(self.timestamp)

    @property
    def year(self) -> int:
        return self.timestamp.year

    @property
    def band_names(self) -> List[str]:
        return list(self.data.data_vars)

    @property
    def bands(self) -> Dict[str, np.ndarray]:
        return {name: self.data[name].values for name in self.data.data_vars}

    @property
    def grid(self) -> GridSpec:
        return GridSpec.from_coords(self.data['lon'].values, self.data['lat'].values)

    def band(self, name: str) -> xr.DataArray:
        if name not in self.data.data_vars:
            raise MissingBandError(name, self.timestamp)
        return self.data[name]

    def with_data(self, data: xr.Dataset) -> 'RasterFrame':
        return RasterFrame(self.timestamp, data)

    def __repr__(self) -> str:
        return f"RasterFrame({self.timestamp.isoformat()}, bands={self.band_names})"


def make_frame(day, bands: Dict[str, np.ndarray], lon, lat, attrs: Optional[dict] = None) -> RasterFrame:
    """Build a frame from plain numpy grids."""
    data = xr.Dataset(
        {name: (GRID_DIMS, np.asarray(values, dtype=float)) for name, values in bands.items()},
        coords={'lat': np.asarray(lat), 'lon': np.asarray(lon)},
        attrs=attrs or {},
    )
    return RasterFrame(to_date(day), data)


def make_time_series(frames: Iterable[RasterFrame]) -> List[RasterFrame]:
    """
    Order frames by date and drop duplicate dates.

    Gaps are left as they are; nothing is interpolated.
    """
    series = []
    seen = set()
    for frame in sorted(frames, key=lambda f: f.timestamp):
        if frame.timestamp in seen:
            logger.warning(f"Duplicate frame for {frame.timestamp}, keeping the first one")
            continue
        seen.add(frame.timestamp)
        series.append(frame)
    return series


def filter_date_range(items: Iterable, start: date, end: date) -> list:
    """Frames (or anything with a timestamp) with start <= timestamp < end."""
    return [item for item in items if start <= item.timestamp < end]
