"""
Standardized anomalies against the day-of-year climatology.
"""

import logging
from typing import Iterable, List, Optional, Sequence

import numpy as np
import xarray as xr

from .climatology import Climatology
from .errors import BaselineMissingError
from .frames import RasterFrame

logger = logging.getLogger(__name__)

# Legacy anomaly band names expected by downstream consumers
ANOMALY_BAND_NAMES = {
    'tmeanc': 'tm_anom',
    'rmean': 'rhm_anom',
    'vpd': 'vpd_anom',
    'logpr': 'logpr_anom',
}

DEFAULT_ANOMALY_BANDS = ('tmeanc', 'rmean', 'vpd', 'logpr')


def anomaly_band_name(band: str) -> str:
    return ANOMALY_BAND_NAMES.get(band, f"{band}_anom")


class AnomalyNormalizer:
    """Converts derived frames to z-scores using a prebuilt climatology."""

    def __init__(self, climatology: Climatology, bands: Optional[Sequence[str]] = None):
        """
        Args:
            climatology: Baseline built from the full historical series
            bands: Derived bands to normalize. None normalizes every band
                present in both the frame and the baseline.
        """
        self.climatology = climatology
        self.bands = list(bands) if bands is not None else None

    def normalize(self, frame: RasterFrame) -> RasterFrame:
        """
        Compute (value - mean) / stddev for each band.

        Pixels whose baseline stddev is NaN or zero are NaN.

        Raises:
            BaselineMissingError: No climatology entry for the frame's day of year
        """
        entry = self.climatology.entry_for(frame.timestamp)
        candidates = self.bands if self.bands is not None else frame.band_names
        bands = [b for b in candidates if b in frame.data.data_vars and b in entry.mean.data_vars]

        anomalies = {}
        for band in bands:
            values = frame.data[band].values
            mean = entry.mean[band].values
            std = entry.std[band].values
            if values.shape != mean.shape:
                raise ValueError(f"Band '{band}' on {frame.timestamp} does not match the baseline grid")
            usable = np.isfinite(std) & (std != 0)
            with np.errstate(invalid='ignore', divide='ignore'):
                z = np.where(usable, (values - mean) / np.where(usable, std, 1.0), np.nan)
            anomalies[anomaly_band_name(band)] = (('lat', 'lon'), z)

        coords = {'lat': frame.data['lat'].values, 'lon': frame.data['lon'].values}
        attrs = dict(frame.data.attrs, baseline_doy=entry.doy)
        return frame.with_data(xr.Dataset(anomalies, coords=coords, attrs=attrs))

    def normalize_series(self, frames: Iterable[RasterFrame]) -> List[RasterFrame]:
        """Normalize every frame, skipping (and logging) frames without a baseline."""
        normalized = []
        for frame in frames:
            try:
                normalized.append(self.normalize(frame))
            except BaselineMissingError as e:
                logger.warning(f"Skipping anomaly for frame: {e}")
        return normalized
