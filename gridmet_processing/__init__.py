"""
GRIDMET County Summaries

Summarizes daily GRIDMET gridded climate data into per-county tables of
derived variables and day-of-year standardized anomalies.
"""

__version__ = "1.0.0"

from .config import GridmetConfig, SummaryRequest
from .regions import RegionCatalog, Region
from .store import RasterVariableStore, XarrayRasterStore
from .derive import VariableDeriver
from .climatology import Climatology, ClimatologyBuilder
from .anomaly import AnomalyNormalizer
from .aggregation import RegionAggregator
from .summary import SummaryTableBuilder
from .processors import GridmetProcessor
from .view import ViewConfig, RenderableLayers, compute_view

__all__ = [
    "GridmetConfig",
    "SummaryRequest",
    "RegionCatalog",
    "Region",
    "RasterVariableStore",
    "XarrayRasterStore",
    "VariableDeriver",
    "Climatology",
    "ClimatologyBuilder",
    "AnomalyNormalizer",
    "RegionAggregator",
    "SummaryTableBuilder",
    "GridmetProcessor",
    "ViewConfig",
    "RenderableLayers",
    "compute_view",
]
