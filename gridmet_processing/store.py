"""
Raster variable store.

The store is the pipeline's only I/O boundary: it answers date-range and band
queries with a time series of RasterFrames. Transient read failures are
retried with bounded exponential backoff.
"""

import glob
import logging
import time
from datetime import date, timedelta
from typing import Callable, Dict, List, Optional, Sequence, TypeVar

import numpy as np
import pandas as pd
import xarray as xr

from .errors import StoreUnavailableError, TransientStoreError
from .frames import RasterFrame, make_time_series, to_date

logger = logging.getLogger(__name__)

T = TypeVar('T')

# GRIDMET short names for the temperature extremes are in Kelvin
DEFAULT_BAND_ALIASES = {
    'tmmn': 'tmin_K',
    'tmmx': 'tmax_K',
}

RAW_BANDS = ['pr', 'rmax', 'rmin', 'tmin_K', 'tmax_K', 'vpd', 'vs']


def retry_with_backoff(func: Callable[[], T], retries: int = 3, base_delay: float = 1.0,
                       max_delay: float = 30.0, sleep: Callable[[float], None] = time.sleep,
                       description: str = "store query") -> T:
    """
    Call func, retrying on TransientStoreError.

    Args:
        func: Zero-argument callable to run
        retries: Number of retries after the first attempt
        base_delay: Delay before the first retry, doubled on every retry
        max_delay: Upper bound for a single delay
        sleep: Sleep function (injectable for tests)
        description: Text used in log messages

    Returns:
        Whatever func returns

    Raises:
        TransientStoreError: The last failure, once the retry budget is spent
    """
    attempt = 0
    while True:
        try:
            return func()
        except TransientStoreError as e:
            if attempt >= retries:
                logger.error(f"{description} failed after {attempt + 1} attempts: {e}")
                raise
            delay = min(max_delay, base_delay * (2 ** attempt))
            attempt += 1
            logger.warning(f"{description} failed ({e}), retry {attempt}/{retries} in {delay:.1f}s")
            sleep(delay)


def convert_longitudes_to_standard(ds: xr.Dataset) -> xr.Dataset:
    """Convert 0-360 longitudes to -180..180 and keep them sorted."""
    if 'lon' not in ds.coords:
        return ds
    lon_values = ds['lon'].values
    if lon_values.max() <= 180:
        return ds
    new_lon_values = np.where(lon_values > 180, lon_values - 360, lon_values)
    return ds.assign_coords(lon=new_lon_values).sortby('lon')


class RasterVariableStore:
    """
    Interface of a queryable time-indexed store of daily raster frames.

    Subclasses implement _query and _latest_date; retries are handled here.
    """

    def __init__(self, retries: int = 3, base_delay: float = 1.0, max_delay: float = 30.0,
                 sleep: Callable[[float], None] = time.sleep):
        self.retries = retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep

    def query(self, start, end, bands: Optional[Sequence[str]] = None) -> List[RasterFrame]:
        """
        Return the frames with start <= date < end, ordered by date.

        Raises:
            StoreUnavailableError: The store kept failing after every retry
        """
        start, end = to_date(start), to_date(end)
        if end <= start:
            return []
        bands = list(bands) if bands else list(RAW_BANDS)
        try:
            frames = retry_with_backoff(
                lambda: self._query(start, end, bands),
                retries=self.retries, base_delay=self.base_delay,
                max_delay=self.max_delay, sleep=self._sleep,
                description=f"Query {start}..{end}",
            )
        except TransientStoreError as e:
            raise StoreUnavailableError(start, end, bands, self.retries + 1) from e
        logger.debug(f"Store returned {len(frames)} frames for {start} to {end}")
        return make_time_series(frames)

    def latest_date(self) -> date:
        """Date of the most recent frame in the store."""
        try:
            return retry_with_backoff(
                self._latest_date, retries=self.retries, base_delay=self.base_delay,
                max_delay=self.max_delay, sleep=self._sleep, description="Latest date lookup",
            )
        except TransientStoreError as e:
            raise StoreUnavailableError(date.min, date.max, [], self.retries + 1) from e

    def _query(self, start: date, end: date, bands: List[str]) -> List[RasterFrame]:
        raise NotImplementedError

    def _latest_date(self) -> date:
        raise NotImplementedError


class XarrayRasterStore(RasterVariableStore):
    """Store backed by an xarray Dataset with a daily 'time' dimension."""

    def __init__(self, dataset: xr.Dataset, band_aliases: Optional[Dict[str, str]] = None, **kwargs):
        super().__init__(**kwargs)
        # GRIDMET NetCDF files index time as 'day'
        if 'time' not in dataset.dims and 'day' in dataset.dims:
            dataset = dataset.rename({'day': 'time'})
        aliases = DEFAULT_BAND_ALIASES if band_aliases is None else band_aliases
        renames = {k: v for k, v in aliases.items() if k in dataset.data_vars}
        if renames:
            dataset = dataset.rename(renames)
        dataset = convert_longitudes_to_standard(dataset)
        self.dataset = dataset.sortby('time')

    @classmethod
    def from_netcdf(cls, data_path: str, chunk_size: Optional[Dict[str, int]] = None,
                    **kwargs) -> 'XarrayRasterStore':
        """
        Open one or more NetCDF files (a path or glob pattern) lazily.

        Raises:
            FileNotFoundError: Nothing matches data_path
        """
        files = sorted(glob.glob(data_path))
        if not files:
            raise FileNotFoundError(f"No NetCDF files match {data_path}")
        logger.info(f"Opening {len(files)} NetCDF file(s) from {data_path}")

        # Chunk sizes are keyed by 'time'; GRIDMET files call that dimension 'day'
        chunks = dict(chunk_size or {'time': 365})
        with xr.open_dataset(files[0]) as first:
            time_dim = 'day' if 'time' not in first.dims and 'day' in first.dims else 'time'
        if time_dim != 'time' and 'time' in chunks:
            chunks[time_dim] = chunks.pop('time')

        ds = xr.open_mfdataset(files, chunks=chunks, combine='by_coords')
        store = cls(ds, **kwargs)
        logger.info(f"Variables: {list(store.dataset.data_vars)}")
        logger.info(f"Time range: {store.dataset.time.values[0]} to {store.dataset.time.values[-1]}")
        return store

    def _query(self, start: date, end: date, bands: List[str]) -> List[RasterFrame]:
        present = [b for b in bands if b in self.dataset.data_vars]
        missing = sorted(set(bands) - set(present))
        if missing:
            logger.debug(f"Bands not in store: {missing}")

        last_day = end - timedelta(days=1)
        try:
            subset = self.dataset[present].sel(time=slice(pd.Timestamp(start), pd.Timestamp(last_day)))
            subset = subset.load()
        except (OSError, TimeoutError) as e:
            raise TransientStoreError(str(e)) from e

        frames = []
        for i, t in enumerate(subset['time'].values):
            day = subset.isel(time=i).drop_vars('time').transpose('lat', 'lon')
            frames.append(RasterFrame(to_date(t), day))
        return frames

    def _latest_date(self) -> date:
        try:
            return to_date(self.dataset['time'].max().values)
        except (OSError, TimeoutError) as e:
            raise TransientStoreError(str(e)) from e
