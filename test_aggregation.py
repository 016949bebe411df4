#!/usr/bin/env python3
"""
Tests for area-weighted county aggregation.
"""

from datetime import date

import geopandas as gpd
import numpy as np
import pytest
from shapely.geometry import box

from gridmet_processing.aggregation import RegionAggregator, compute_region_weights
from gridmet_processing.frames import GridSpec, make_frame
from gridmet_processing.regions import RegionCatalog

# 2x2 grid of 1 degree pixels, centers at lon -90/-89 and lat 35/36
LON = [-90.0, -89.0]
LAT = [35.0, 36.0]


def create_mock_counties():
    """Counties covering one pixel, all pixels, one and a half pixels, and nothing."""
    geometries = [
        box(-90.5, 34.5, -89.5, 35.5),  # Single cell (lat 35, lon -90)
        box(-90.5, 34.5, -88.5, 36.5),  # All cells
        box(-90.5, 34.5, -89.0, 35.5),  # Full cell plus half of its eastern neighbour
        box(10.0, 10.0, 11.0, 11.0),    # Off the grid
    ]
    counties = gpd.GeoDataFrame(
        {
            'GEOID': ['01001', '01002', '01003', '01004'],
            'NAME': ['Single Cell County', 'Multi Cell County', 'Partial County', 'Far Away County'],
            'geometry': geometries,
        },
        crs="EPSG:4326"
    )
    return RegionCatalog(counties).for_jurisdiction('01')


def create_mock_frame(values, band='pr', day=date(2020, 7, 1), lat=LAT):
    return make_frame(day, {band: values}, lon=LON, lat=lat)


def test_constant_field_gives_constant_means():
    aggregate = RegionAggregator(create_mock_counties()).aggregate(create_mock_frame(np.full((2, 2), 7.5)))
    table = aggregate.table.set_index('fips')

    np.testing.assert_allclose(table.loc[['01001', '01002', '01003'], 'pr'].values, 7.5)
    assert aggregate.timestamp == date(2020, 7, 1)


def test_partial_overlap_weights():
    # values[lat, lon]: lat 35 row holds 1 (lon -90) and 4 (lon -89)
    values = np.array([[1.0, 4.0], [2.0, 3.0]])
    table = RegionAggregator(create_mock_counties()).aggregate(create_mock_frame(values)).table.set_index('fips')

    np.testing.assert_allclose(table.loc['01001', 'pr'], 1.0)
    np.testing.assert_allclose(table.loc['01002', 'pr'], 2.5)
    np.testing.assert_allclose(table.loc['01003', 'pr'], (1.0 * 1.0 + 0.5 * 4.0) / 1.5)


def test_region_without_pixels_is_nan():
    table = RegionAggregator(create_mock_counties()).aggregate(create_mock_frame(np.ones((2, 2)))).table
    far = table[table['fips'] == '01004']

    assert len(far) == 1
    assert np.isnan(far['pr'].iloc[0])
    assert far['district'].iloc[0] == 'Far Away County'


def test_missing_pixels_are_ignored():
    values = np.array([[np.nan, 4.0], [2.0, 3.0]])
    table = RegionAggregator(create_mock_counties()).aggregate(create_mock_frame(values)).table.set_index('fips')

    assert np.isnan(table.loc['01001', 'pr'])
    np.testing.assert_allclose(table.loc['01002', 'pr'], 3.0)
    np.testing.assert_allclose(table.loc['01003', 'pr'], 4.0)


def test_north_up_grid_matches_south_up_grid():
    """Latitude order of the array must not change the result."""
    values = np.array([[1.0, 4.0], [2.0, 3.0]])
    south_up = create_mock_frame(values)
    north_up = create_mock_frame(values[::-1], lat=LAT[::-1])

    aggregator = RegionAggregator(create_mock_counties())
    a = aggregator.aggregate(south_up).table
    b = aggregator.aggregate(north_up).table
    np.testing.assert_allclose(a['pr'].values, b['pr'].values)


def test_weights_cached_per_grid():
    aggregator = RegionAggregator(create_mock_counties())
    frame = create_mock_frame(np.ones((2, 2)))
    first = aggregator.weights_for(frame.grid)
    assert aggregator.weights_for(frame.grid) is first


def test_requested_band_missing_from_frame_is_nan():
    aggregate = RegionAggregator(create_mock_counties()).aggregate(create_mock_frame(np.ones((2, 2))),
                                                                  bands=['pr', 'tm_anom'])
    assert list(aggregate.table.columns) == ['fips', 'district', 'pr', 'tm_anom']
    assert aggregate.table['tm_anom'].isna().all()


def test_weight_fractions():
    grid = GridSpec.from_coords(LON, LAT)
    weights = {w.fips: w for w in compute_region_weights(grid, create_mock_counties())}

    np.testing.assert_allclose(weights['01001'].fraction, [1.0])
    np.testing.assert_allclose(weights['01002'].fraction, [1.0] * 4)
    np.testing.assert_allclose(sorted(weights['01003'].fraction), [0.5, 1.0])
    assert weights['01004'].is_empty


def test_irregular_grid_rejected():
    with pytest.raises(ValueError):
        GridSpec.from_coords([-90.0, -89.0, -87.5], LAT)


def test_single_row_grid_uses_column_spacing():
    """A one-pixel-tall grid takes its pixel height from the lon spacing."""
    lon = [-90.0, -89.75, -89.5, -89.25]
    frame = make_frame(date(2020, 7, 1), {'pr': [[1.0, 2.0, 3.0, 4.0]]}, lon=lon, lat=[35.0])
    counties = RegionCatalog(gpd.GeoDataFrame(
        {
            'GEOID': ['01001', '01002'],
            'NAME': ['Inside County', 'North County'],
            'geometry': [box(-90.125, 34.875, -89.875, 35.125), box(-90.2, 35.3, -89.4, 35.45)],
        },
        crs="EPSG:4326"
    )).for_jurisdiction('01')

    assert frame.grid.y_resolution == pytest.approx(0.25)
    table = RegionAggregator(counties).aggregate(frame).table.set_index('fips')

    np.testing.assert_allclose(table.loc['01001', 'pr'], 1.0)
    assert np.isnan(table.loc['01002', 'pr'])
