"""
Map view computation for an external viewer.

compute_view is a pure function of an explicit configuration: given the
frame for the requested day and the counties of the requested state it
returns the layers a viewer would draw. It holds no state between calls.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Dict

import geopandas as gpd
import numpy as np
import xarray as xr

from .frames import RasterFrame, to_date

logger = logging.getLogger(__name__)

VIEW_LAYERS = {
    'derived': {
        'Relative Humidity': 'rmean',
        'Vapor Pressure Deficit': 'vpd',
        'Precipitation': 'pr',
        'Temperature': 'tmeanc',
    },
    'anomaly': {
        'Relative Humidity': 'rhm_anom',
        'Vapor Pressure Deficit': 'vpd_anom',
        'Precipitation': 'logpr_anom',
        'Temperature': 'tm_anom',
    },
}


@dataclass(frozen=True)
class ViewConfig:
    """What the viewer wants to see."""
    jurisdiction: str
    date: date
    mode: str = 'derived'

    def __post_init__(self):
        object.__setattr__(self, 'date', to_date(self.date))
        object.__setattr__(self, 'jurisdiction', str(self.jurisdiction))
        if self.mode not in VIEW_LAYERS:
            raise ValueError(f"Invalid view mode: {self.mode}. Valid options: {list(VIEW_LAYERS)}")


@dataclass(frozen=True, eq=False)
class RenderableLayers:
    """Layers for one day, keyed by display name, plus county outlines."""
    date: date
    mode: str
    layers: Dict[str, xr.DataArray]
    region_outlines: gpd.GeoSeries


def normalize_min_max(band: xr.DataArray) -> xr.DataArray:
    """Rescale a band to 0..1 using its own minimum and maximum."""
    lo = float(band.min(skipna=True))
    hi = float(band.max(skipna=True))
    if not np.isfinite(lo) or not np.isfinite(hi) or hi == lo:
        return xr.full_like(band, np.nan, dtype=float)
    return (band - lo) / (hi - lo)


def compute_view(config: ViewConfig, frame: RasterFrame, counties: gpd.GeoDataFrame) -> RenderableLayers:
    """
    Compute the viewer layers for one day.

    Derived layers are min-max normalized per frame; anomaly layers are
    z-scores and are returned as they are. Layers whose band is missing
    from the frame are left out.

    Args:
        config: Requested state, date and mode
        frame: Derived frame (derived mode) or anomaly frame (anomaly mode)
            for config.date
        counties: Counties of config.jurisdiction
    """
    if frame.timestamp != config.date:
        raise ValueError(f"Frame is for {frame.timestamp}, view requested {config.date}")

    layers = {}
    for title, band in VIEW_LAYERS[config.mode].items():
        if band not in frame.data.data_vars:
            logger.debug(f"Band '{band}' not in frame, no '{title}' layer")
            continue
        values = frame.data[band]
        layers[title] = normalize_min_max(values) if config.mode == 'derived' else values

    return RenderableLayers(config.date, config.mode, layers, counties.geometry.boundary)
