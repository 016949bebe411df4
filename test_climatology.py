#!/usr/bin/env python3
"""
Tests for the day-of-year climatology and standardized anomalies.
"""

from datetime import date, timedelta

import numpy as np
import pytest

from gridmet_processing.anomaly import AnomalyNormalizer
from gridmet_processing.climatology import ClimatologyAccumulator, ClimatologyBuilder
from gridmet_processing.errors import BaselineMissingError
from gridmet_processing.frames import day_of_year, make_frame

LON = [-90.0, -89.0]
LAT = [35.0, 36.0]


def doy_date(year, doy):
    return date(year, 1, 1) + timedelta(days=doy - 1)


def create_mock_derived_frame(day, tmeanc, rmean=50.0):
    """Derived frame where every pixel holds the same values."""
    return make_frame(day, {
        'tmeanc': np.full((2, 2), tmeanc, dtype=float),
        'rmean': np.full((2, 2), rmean, dtype=float),
    }, lon=LON, lat=LAT)


def create_doy200_history():
    """DOY 200 in five years with tmeanc 10, 12, 11, 13, 14."""
    values = [10.0, 12.0, 11.0, 13.0, 14.0]
    return [create_mock_derived_frame(doy_date(2001 + i, 200), v) for i, v in enumerate(values)]


def test_doy_mean_and_std():
    climatology = ClimatologyBuilder().build(create_doy200_history())
    entry = climatology[200]

    np.testing.assert_allclose(entry.mean['tmeanc'].values, 12.0)
    np.testing.assert_allclose(entry.std['tmeanc'].values, 1.5811, atol=1e-4)
    assert (entry.count['tmeanc'].values == 5).all()
    assert entry.std.attrs['ddof'] == 1


def test_anomaly_for_doy200():
    climatology = ClimatologyBuilder().build(create_doy200_history())
    frame = create_mock_derived_frame(doy_date(2006, 200), 15.0)

    anomaly = AnomalyNormalizer(climatology, bands=['tmeanc']).normalize(frame)

    assert anomaly.band_names == ['tm_anom']
    np.testing.assert_allclose(anomaly.data['tm_anom'].values, 1.897, atol=1e-3)
    assert anomaly.data.attrs['baseline_doy'] == 200


def test_zero_stddev_gives_nan_anomaly():
    """rmean is constant across years, so its stddev is 0."""
    climatology = ClimatologyBuilder().build(create_doy200_history())
    frame = create_mock_derived_frame(doy_date(2006, 200), 15.0, rmean=55.0)

    anomaly = AnomalyNormalizer(climatology).normalize(frame)

    np.testing.assert_allclose(climatology[200].std['rmean'].values, 0.0)
    assert np.isnan(anomaly.data['rhm_anom'].values).all()


def test_single_year_has_no_stddev():
    climatology = ClimatologyBuilder().build([create_mock_derived_frame(doy_date(2001, 10), 5.0)])
    entry = climatology[10]

    np.testing.assert_allclose(entry.mean['tmeanc'].values, 5.0)
    assert np.isnan(entry.std['tmeanc'].values).all()

    anomaly = AnomalyNormalizer(climatology).normalize(create_mock_derived_frame(doy_date(2002, 10), 6.0))
    assert np.isnan(anomaly.data['tm_anom'].values).all()


def test_missing_pixels_are_not_counted():
    frames = create_doy200_history()
    values = frames[0].data['tmeanc'].values.copy()
    values[0, 0] = np.nan
    frames[0] = frames[0].with_data(frames[0].data.assign(tmeanc=(('lat', 'lon'), values)))

    entry = ClimatologyBuilder().build(frames)[200]

    assert entry.count['tmeanc'].values[0, 0] == 4
    assert entry.count['tmeanc'].values[1, 1] == 5
    np.testing.assert_allclose(entry.mean['tmeanc'].values[0, 0], 12.5)
    np.testing.assert_allclose(entry.mean['tmeanc'].values[1, 1], 12.0)


def test_missing_baseline():
    climatology = ClimatologyBuilder().build(create_doy200_history())

    with pytest.raises(BaselineMissingError) as excinfo:
        climatology.entry_for(doy_date(2006, 201))
    assert excinfo.value.doy == 201

    normalizer = AnomalyNormalizer(climatology)
    frames = [create_mock_derived_frame(doy_date(2006, 200), 15.0),
              create_mock_derived_frame(doy_date(2006, 201), 15.0)]
    assert [f.timestamp for f in normalizer.normalize_series(frames)] == [doy_date(2006, 200)]


def test_sharded_build_matches_single_pass():
    """Merging per-shard accumulators gives the same statistics as one pass."""
    rng = np.random.default_rng(42)
    frames = []
    for year in range(2001, 2011):
        for doy in (1, 2, 3, 200):
            frames.append(make_frame(doy_date(year, doy),
                                     {'tmeanc': rng.normal(20, 5, (2, 2))}, lon=LON, lat=LAT))

    single = ClimatologyBuilder(n_shards=1).build(frames)
    sharded = ClimatologyBuilder(n_shards=3).build(frames)

    # Uneven split of the same DOY across accumulators must also merge exactly
    halves = ClimatologyAccumulator().add_all(frames[::2]).merge(ClimatologyAccumulator().add_all(frames[1::2]))
    merged = halves.finalize()

    assert sorted(single) == sorted(sharded) == sorted(merged) == [1, 2, 3, 200]
    for doy in single:
        expected = np.stack([f.data['tmeanc'].values for f in frames if f.doy == doy])
        for climatology in (single, sharded, merged):
            np.testing.assert_allclose(climatology[doy].mean['tmeanc'].values, expected.mean(axis=0))
            np.testing.assert_allclose(climatology[doy].std['tmeanc'].values, expected.std(axis=0, ddof=1))


def test_shards_keep_each_doy_together():
    frames = [create_mock_derived_frame(doy_date(y, d), 1.0) for y in (2001, 2002) for d in (5, 6, 7, 8)]
    shards = ClimatologyBuilder(n_shards=3).shard(frames)

    seen = {}
    for i, shard in enumerate(shards):
        for frame in shard:
            assert seen.setdefault(frame.doy, i) == i


def test_leap_day_is_its_own_doy():
    frames = [create_mock_derived_frame(date(2004, 12, 31), 1.0),
              create_mock_derived_frame(date(2005, 12, 31), 2.0)]
    climatology = ClimatologyBuilder().build(frames)

    assert day_of_year(date(2004, 12, 31)) == 366
    assert sorted(climatology) == [365, 366]


def test_grid_mismatch_rejected():
    accumulator = ClimatologyAccumulator()
    accumulator.add(create_mock_derived_frame(doy_date(2001, 1), 1.0))
    other = make_frame(doy_date(2002, 1), {'tmeanc': np.ones((2, 2))}, lon=[-80.0, -79.0], lat=LAT)
    with pytest.raises(ValueError):
        accumulator.add(other)


def test_value_at_baseline_mean_has_zero_anomaly():
    climatology = ClimatologyBuilder().build(create_doy200_history())
    anomaly = AnomalyNormalizer(climatology, bands=['tmeanc']).normalize(
        create_mock_derived_frame(doy_date(2007, 200), 12.0))

    np.testing.assert_allclose(anomaly.data['tm_anom'].values, 0.0, atol=1e-12)
    assert (climatology[200].std['tmeanc'].values >= 0).all()
