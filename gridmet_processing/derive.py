"""
Derived climate variables.

Converts a raw GRIDMET frame into the variables summarized by county:
mean relative humidity, temperatures in Celsius and mean temperature, with
precipitation, vapor pressure deficit and wind speed passed through.
"""

import logging
from typing import Iterable, List

import numpy as np
import xarray as xr

from .errors import MissingBandError
from .frames import RasterFrame

logger = logging.getLogger(__name__)

KELVIN_OFFSET = 273.15

REQUIRED_BANDS = ('pr', 'rmax', 'rmin', 'tmin_K', 'tmax_K', 'vpd', 'vs')

DERIVED_VARIABLES = {
    'rmean': 'mean of rmax and rmin (%)',
    'tminc': 'tmin_K - 273.15 (degC)',
    'tmaxc': 'tmax_K - 273.15 (degC)',
    'tmeanc': 'mean of tminc and tmaxc (degC)',
    'pr': 'precipitation, unchanged (mm)',
    'vpd': 'vapor pressure deficit, unchanged (kPa)',
    'vs': 'wind speed at 10 m, unchanged (m/s)',
}

LEGACY_VARIABLES = {
    'logpr': 'ln(pr), NaN where pr <= 0',
}


class VariableDeriver:
    """Pure per-frame transform from raw bands to derived bands."""

    def __init__(self, legacy_logpr: bool = False):
        """
        Args:
            legacy_logpr: Also produce the log-precipitation band. Zero
                precipitation has no logarithm and is left missing.
        """
        self.legacy_logpr = legacy_logpr

    @property
    def output_bands(self) -> List[str]:
        bands = list(DERIVED_VARIABLES)
        if self.legacy_logpr:
            bands.extend(LEGACY_VARIABLES)
        return bands

    def derive(self, frame: RasterFrame) -> RasterFrame:
        """
        Compute the derived bands of one frame.

        Raises:
            MissingBandError: A required input band is absent
        """
        for band in REQUIRED_BANDS:
            frame.band(band)

        raw = frame.data
        tminc = raw['tmin_K'] - KELVIN_OFFSET
        tmaxc = raw['tmax_K'] - KELVIN_OFFSET
        tminc.attrs['units'] = 'degC'
        tmaxc.attrs['units'] = 'degC'

        derived = {
            'rmean': (raw['rmax'] + raw['rmin']) / 2,
            'tminc': tminc,
            'tmaxc': tmaxc,
            'tmeanc': (tminc + tmaxc) / 2,
            'pr': raw['pr'],
            'vpd': raw['vpd'],
            'vs': raw['vs'],
        }
        if self.legacy_logpr:
            pr = raw['pr']
            with np.errstate(divide='ignore', invalid='ignore'):
                derived['logpr'] = np.log(pr.where(pr > 0))

        out = xr.Dataset(derived, attrs=dict(raw.attrs))
        out.attrs['doy'] = frame.doy
        out.attrs['year'] = frame.year
        return frame.with_data(out)

    def derive_series(self, frames: Iterable[RasterFrame]) -> List[RasterFrame]:
        """Derive every frame, skipping (and logging) frames with missing bands."""
        derived = []
        for frame in frames:
            try:
                derived.append(self.derive(frame))
            except MissingBandError as e:
                logger.warning(f"Skipping frame: {e}")
        return derived
