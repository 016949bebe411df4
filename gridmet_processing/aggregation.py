"""
Area-weighted zonal means of raster frames over county polygons.

Every pixel footprint that intersects a county contributes with the fraction
of its area that lies inside the polygon. Counties that no pixel touches get
NaN, never zero.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple

import geopandas as gpd
import numpy as np
import pandas as pd
import shapely

from .frames import GridSpec, RasterFrame

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegionWeights:
    """Flat pixel indices and overlap fractions of one county on one grid."""
    fips: str
    district: str
    pixel_index: np.ndarray
    fraction: np.ndarray

    @property
    def is_empty(self) -> bool:
        return self.pixel_index.size == 0

    def weighted_mean(self, flat_values: np.ndarray) -> float:
        if self.is_empty:
            return np.nan
        values = flat_values[self.pixel_index]
        valid = np.isfinite(values)
        if not valid.any():
            return np.nan
        weights = self.fraction[valid]
        return float(np.sum(weights * values[valid]) / np.sum(weights))


@dataclass(frozen=True)
class RegionAggregate:
    """Zonal means of one frame: one row per county, one column per band."""
    timestamp: date
    table: pd.DataFrame


def compute_region_weights(grid: GridSpec, counties: gpd.GeoDataFrame) -> List[RegionWeights]:
    """
    Intersect every county polygon with the pixel footprints of a grid.

    Only the pixels inside each polygon's bounding box are tested.
    """
    inverse = ~grid.transform
    weights = []
    for row in counties.itertuples(index=False):
        geom = row.geometry
        if geom is None or geom.is_empty:
            weights.append(RegionWeights(row.fips, row.district, np.array([], dtype=np.int64), np.array([])))
            continue

        minx, miny, maxx, maxy = geom.bounds
        col0, row0 = inverse @ (minx, maxy)
        col1, row1 = inverse @ (maxx, miny)
        c_lo = max(int(np.floor(min(col0, col1))), 0)
        c_hi = min(int(np.ceil(max(col0, col1))), grid.width)
        r_lo = max(int(np.floor(min(row0, row1))), 0)
        r_hi = min(int(np.ceil(max(row0, row1))), grid.height)

        if c_lo >= c_hi or r_lo >= r_hi:
            weights.append(RegionWeights(row.fips, row.district, np.array([], dtype=np.int64), np.array([])))
            continue

        rows, cols = np.meshgrid(np.arange(r_lo, r_hi), np.arange(c_lo, c_hi), indexing='ij')
        rows, cols = rows.ravel(), cols.ravel()
        x0, y0 = grid.transform @ (cols, rows)
        x1, y1 = grid.transform @ (cols + 1, rows + 1)
        boxes = shapely.box(np.minimum(x0, x1), np.minimum(y0, y1), np.maximum(x0, x1), np.maximum(y0, y1))

        fraction = shapely.area(shapely.intersection(boxes, geom)) / shapely.area(boxes)
        keep = fraction > 0
        pixel_index = grid.array_row(rows[keep]) * grid.width + cols[keep]
        weights.append(RegionWeights(row.fips, row.district, pixel_index.astype(np.int64), fraction[keep]))
    return weights


class RegionAggregator:
    """Reduces frames to one area-weighted mean per county and band."""

    def __init__(self, counties: gpd.GeoDataFrame):
        """
        Args:
            counties: Counties of one jurisdiction with 'fips', 'district'
                and geometry columns (see RegionCatalog.for_jurisdiction)
        """
        self.counties = counties.sort_values('fips').reset_index(drop=True)
        self._weights: Dict[Tuple, List[RegionWeights]] = {}

    def weights_for(self, grid: GridSpec) -> List[RegionWeights]:
        key = grid.key()
        if key not in self._weights:
            weights = compute_region_weights(grid, self.counties)
            empty = [w.fips for w in weights if w.is_empty]
            if empty:
                logger.warning(f"{len(empty)} region(s) intersect no pixels and will be NaN: {empty}")
            logger.debug(f"Computed pixel weights for {len(weights)} regions on a "
                         f"{grid.height}x{grid.width} grid")
            self._weights[key] = weights
        return self._weights[key]

    def aggregate(self, frame: RasterFrame, bands: Optional[Sequence[str]] = None) -> RegionAggregate:
        """
        Area-weighted mean of each band over each county.

        Args:
            frame: Derived or anomaly frame
            bands: Bands to reduce; all bands of the frame when None.
                Requested bands the frame lacks come out as NaN.
        """
        bands = list(bands) if bands is not None else frame.band_names
        weights = self.weights_for(frame.grid)

        columns = {
            'fips': [w.fips for w in weights],
            'district': [w.district for w in weights],
        }
        for band in bands:
            if band in frame.data.data_vars:
                flat = np.asarray(frame.data[band].values, dtype=float).ravel()
                columns[band] = [w.weighted_mean(flat) for w in weights]
            else:
                columns[band] = [np.nan] * len(weights)
        return RegionAggregate(frame.timestamp, pd.DataFrame(columns))
