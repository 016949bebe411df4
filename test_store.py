#!/usr/bin/env python3
"""
Tests for the raster store: date-range queries, band aliases and retries.
"""

from datetime import date

import numpy as np
import pandas as pd
import pytest
import xarray as xr

from gridmet_processing.errors import StoreUnavailableError, TransientStoreError
from gridmet_processing.frames import make_frame
from gridmet_processing.store import RasterVariableStore, XarrayRasterStore, retry_with_backoff


def create_mock_dataset(start='2020-01-01', periods=10, lon=(270.0, 271.0)):
    """GRIDMET-style dataset: 'day' dimension, Kelvin temperatures as tmmn/tmmx."""
    times = pd.date_range(start, periods=periods, freq='D')
    shape = (periods, 2, 2)
    ramp = np.arange(periods, dtype=float)[:, None, None] * np.ones(shape)
    return xr.Dataset(
        {
            'tmmn': (('day', 'lat', 'lon'), 273.15 + ramp),
            'tmmx': (('day', 'lat', 'lon'), 283.15 + ramp),
            'pr': (('day', 'lat', 'lon'), ramp),
        },
        coords={'day': times, 'lat': [35.0, 36.0], 'lon': list(lon)},
    )


class FlakyStore(RasterVariableStore):
    """Fails a fixed number of times before answering."""

    def __init__(self, failures, **kwargs):
        super().__init__(**kwargs)
        self.failures = failures
        self.calls = 0

    def _query(self, start, end, bands):
        self.calls += 1
        if self.calls <= self.failures:
            raise TransientStoreError("connection reset")
        return [make_frame(start, {'pr': np.zeros((2, 2))}, lon=[0.0, 1.0], lat=[0.0, 1.0])]


def test_query_is_end_exclusive():
    store = XarrayRasterStore(create_mock_dataset())
    frames = store.query(date(2020, 1, 3), date(2020, 1, 6))

    assert [f.timestamp for f in frames] == [date(2020, 1, 3), date(2020, 1, 4), date(2020, 1, 5)]
    np.testing.assert_allclose(frames[0].data['pr'].values, 2.0)


def test_empty_and_inverted_ranges():
    store = XarrayRasterStore(create_mock_dataset())
    assert store.query(date(2020, 1, 5), date(2020, 1, 5)) == []
    assert store.query(date(2020, 1, 6), date(2020, 1, 2)) == []
    assert store.query(date(2021, 1, 1), date(2021, 2, 1)) == []


def test_band_aliases_and_longitudes():
    store = XarrayRasterStore(create_mock_dataset())
    frame = store.query('2020-01-01', '2020-01-02', ['tmin_K', 'tmax_K'])[0]

    assert sorted(frame.band_names) == ['tmax_K', 'tmin_K']
    np.testing.assert_allclose(frame.data['tmin_K'].values, 273.15)
    np.testing.assert_allclose(frame.data['lon'].values, [-90.0, -89.0])
    assert frame.data['tmin_K'].dims == ('lat', 'lon')


def test_latest_date():
    store = XarrayRasterStore(create_mock_dataset(periods=31))
    assert store.latest_date() == date(2020, 1, 31)


def test_from_netcdf_missing_files(tmp_path):
    with pytest.raises(FileNotFoundError):
        XarrayRasterStore.from_netcdf(str(tmp_path / 'gridmet_*.nc'))


def test_retry_delays_double_up_to_the_cap():
    delays = []

    def always_fails():
        raise TransientStoreError("timeout")

    with pytest.raises(TransientStoreError):
        retry_with_backoff(always_fails, retries=4, base_delay=1.0, max_delay=5.0, sleep=delays.append)
    assert delays == [1.0, 2.0, 4.0, 5.0]


def test_transient_failures_recovered():
    delays = []
    store = FlakyStore(failures=2, retries=3, base_delay=0.5, sleep=delays.append)

    frames = store.query(date(2020, 1, 1), date(2020, 1, 2))

    assert len(frames) == 1
    assert store.calls == 3
    assert delays == [0.5, 1.0]


def test_store_unavailable_after_retries():
    delays = []
    store = FlakyStore(failures=10, retries=2, sleep=delays.append)

    with pytest.raises(StoreUnavailableError) as excinfo:
        store.query(date(2020, 1, 1), date(2020, 1, 2), ['pr'])

    assert store.calls == 3
    assert excinfo.value.attempts == 3
    assert excinfo.value.bands == ['pr']
    assert len(delays) == 2


def test_other_errors_are_not_retried():
    calls = []

    def broken():
        calls.append(1)
        raise KeyError('pr')

    with pytest.raises(KeyError):
        retry_with_backoff(broken, sleep=lambda s: None)
    assert len(calls) == 1


def test_from_netcdf_gridmet_layout(tmp_path):
    """Files indexed by 'day' open with the configured time chunking."""
    create_mock_dataset(periods=12).to_netcdf(tmp_path / 'gridmet_2020.nc')

    store = XarrayRasterStore.from_netcdf(str(tmp_path / 'gridmet_*.nc'), chunk_size={'time': 5})

    assert 'time' in store.dataset.dims
    assert store.dataset['pr'].chunks is not None
    assert store.latest_date() == date(2020, 1, 12)
    frames = store.query(date(2020, 1, 11), date(2020, 1, 20))
    assert [f.timestamp for f in frames] == [date(2020, 1, 11), date(2020, 1, 12)]
    np.testing.assert_allclose(frames[-1].data['tmin_K'].values, 273.15 + 11)
