"""
Flat county-by-day summary table.

Turns per-frame zonal means into one row per (county, date) with the column
layout expected by downstream forecasting models.
"""

import logging
from datetime import date
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

import pandas as pd

from .aggregation import RegionAggregate
from .frames import day_of_year, filter_date_range
from .utils import ensure_directory_exists

logger = logging.getLogger(__name__)

ID_COLUMNS = ['district', 'fips', 'doy', 'year']

DERIVED_OUTPUT_VARIABLES = ['tminc', 'tmeanc', 'tmaxc', 'pr', 'rmean', 'vpd', 'vs']
LEGACY_OUTPUT_VARIABLES = ['logpr']
ANOMALY_OUTPUT_VARIABLES = ['tm_anom', 'rhm_anom', 'vpd_anom', 'logpr_anom']

CANONICAL_VARIABLE_ORDER = DERIVED_OUTPUT_VARIABLES + LEGACY_OUTPUT_VARIABLES + ANOMALY_OUTPUT_VARIABLES

# Internal column name -> exported column name
DEFAULT_OUTPUT_NAMES = {
    'district': 'district',
    'fips': 'fips',
    'doy': 'doy',
    'year': 'year',
}


def order_variables(variables: Iterable[str]) -> List[str]:
    """Sort variables into the canonical export order, unknown names last."""
    variables = list(dict.fromkeys(variables))
    known = [v for v in CANONICAL_VARIABLE_ORDER if v in variables]
    return known + [v for v in variables if v not in CANONICAL_VARIABLE_ORDER]


class SummaryTableBuilder:
    """Builds the row-per-(county, date) export table."""

    def __init__(self, variables: Sequence[str], output_names: Optional[Dict[str, str]] = None):
        """
        Args:
            variables: Variable columns to include, derived and/or anomaly
            output_names: Internal -> external column renames applied last
        """
        self.variables = order_variables(variables)
        self.output_names = dict(DEFAULT_OUTPUT_NAMES)
        if output_names:
            self.output_names.update(output_names)

    @property
    def columns(self) -> List[str]:
        return [self.output_names.get(c, c) for c in ID_COLUMNS + self.variables]

    def build(self, aggregates: Iterable[RegionAggregate], start: date, end: date) -> pd.DataFrame:
        """
        Assemble the table for dates start <= date < end.

        Rows are sorted by date, then county FIPS. Dates without an aggregate
        produce no rows.
        """
        pieces = []
        for aggregate in filter_date_range(aggregates, start, end):
            piece = aggregate.table.copy()
            piece['date'] = pd.Timestamp(aggregate.timestamp)
            piece['doy'] = day_of_year(aggregate.timestamp)
            piece['year'] = aggregate.timestamp.year
            pieces.append(piece)

        if not pieces:
            logger.warning(f"No frames between {start} and {end}; the summary table is empty")
            return pd.DataFrame(columns=self.columns)

        table = pd.concat(pieces, ignore_index=True)
        for variable in self.variables:
            if variable not in table.columns:
                table[variable] = float('nan')

        duplicated = table.duplicated(subset=['fips', 'date'], keep='first')
        if duplicated.any():
            logger.warning(f"Dropping {int(duplicated.sum())} duplicate (county, date) rows")
            table = table[~duplicated]

        table = table.sort_values(['date', 'fips'], kind='mergesort').reset_index(drop=True)
        table = table[ID_COLUMNS + self.variables].astype({'doy': int, 'year': int})
        return table.rename(columns=self.output_names)


def write_csv(table: pd.DataFrame, output_path) -> Path:
    """Write the summary table as CSV (no index) and return the path."""
    output_path = Path(output_path)
    ensure_directory_exists(output_path.parent)
    table.to_csv(output_path, index=False)
    logger.info(f"Saved {len(table)} rows to {output_path}")
    return output_path
