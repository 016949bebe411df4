"""
County reference data and jurisdiction filtering.

Counties are read with geopandas from TIGER-style boundary files (GEOID,
NAME, STATEFP columns) and filtered to a single state.
"""

import logging
import os
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Union

import geopandas as gpd
from shapely.geometry.base import BaseGeometry

from .errors import UnknownJurisdictionError

logger = logging.getLogger(__name__)

# State codes outside the contiguous US (AK, HI and the territories)
NON_CONUS_STATE_FIPS = ('02', '15', '60', '66', '69', '72', '78')

STATE_FIPS_TO_POSTAL = {
    '01': 'AL', '02': 'AK', '04': 'AZ', '05': 'AR', '06': 'CA',
    '08': 'CO', '09': 'CT', '10': 'DE', '11': 'DC', '12': 'FL',
    '13': 'GA', '15': 'HI', '16': 'ID', '17': 'IL', '18': 'IN',
    '19': 'IA', '20': 'KS', '21': 'KY', '22': 'LA', '23': 'ME',
    '24': 'MD', '25': 'MA', '26': 'MI', '27': 'MN', '28': 'MS',
    '29': 'MO', '30': 'MT', '31': 'NE', '32': 'NV', '33': 'NH',
    '34': 'NJ', '35': 'NM', '36': 'NY', '37': 'NC', '38': 'ND',
    '39': 'OH', '40': 'OK', '41': 'OR', '42': 'PA', '44': 'RI',
    '45': 'SC', '46': 'SD', '47': 'TN', '48': 'TX', '49': 'UT',
    '50': 'VT', '51': 'VA', '53': 'WA', '54': 'WV', '55': 'WI',
    '56': 'WY'
}

STATE_NAMES = {
    '01': 'Alabama', '02': 'Alaska', '04': 'Arizona', '05': 'Arkansas',
    '06': 'California', '08': 'Colorado', '09': 'Connecticut', '10': 'Delaware',
    '11': 'District of Columbia', '12': 'Florida', '13': 'Georgia', '15': 'Hawaii',
    '16': 'Idaho', '17': 'Illinois', '18': 'Indiana', '19': 'Iowa', '20': 'Kansas',
    '21': 'Kentucky', '22': 'Louisiana', '23': 'Maine', '24': 'Maryland',
    '25': 'Massachusetts', '26': 'Michigan', '27': 'Minnesota', '28': 'Mississippi',
    '29': 'Missouri', '30': 'Montana', '31': 'Nebraska', '32': 'Nevada',
    '33': 'New Hampshire', '34': 'New Jersey', '35': 'New Mexico', '36': 'New York',
    '37': 'North Carolina', '38': 'North Dakota', '39': 'Ohio', '40': 'Oklahoma',
    '41': 'Oregon', '42': 'Pennsylvania', '44': 'Rhode Island', '45': 'South Carolina',
    '46': 'South Dakota', '47': 'Tennessee', '48': 'Texas', '49': 'Utah',
    '50': 'Vermont', '51': 'Virginia', '53': 'Washington', '54': 'West Virginia',
    '55': 'Wisconsin', '56': 'Wyoming'
}

_LOOKUP = {}
for _fips, _postal in STATE_FIPS_TO_POSTAL.items():
    _LOOKUP[_postal.lower()] = _fips
    _LOOKUP[STATE_NAMES[_fips].lower()] = _fips


def normalize_state_code(jurisdiction: Union[str, int]) -> str:
    """
    Resolve a state FIPS code, postal code or state name to a 2-digit FIPS string.

    Unrecognized values are returned as-is (digits zero-padded) so that the
    region filter, not this lookup, decides whether they match anything.
    """
    text = str(jurisdiction).strip()
    if text.isdigit():
        return text.zfill(2)
    return _LOOKUP.get(text.lower(), text)


def state_name(jurisdiction: Union[str, int]) -> str:
    code = normalize_state_code(jurisdiction)
    return STATE_NAMES.get(code, str(jurisdiction))


@dataclass(frozen=True)
class Region:
    """A county polygon with its identifiers."""
    fips: str
    district: str
    state_fips: str
    geometry: BaseGeometry


class RegionCatalog:
    """Read-only collection of county polygons."""

    def __init__(self, counties: gpd.GeoDataFrame, fips_col: str = 'GEOID',
                 name_col: str = 'NAME', state_col: str = 'STATEFP'):
        """
        Args:
            counties: County boundaries
            fips_col: Column holding the county FIPS (GEOID) code
            name_col: Column holding the county name
            state_col: Column holding the state FIPS code. Derived from the
                first two digits of the county code when absent.
        """
        for col in (fips_col, name_col):
            if col not in counties.columns:
                raise ValueError(f"County boundaries have no '{col}' column")

        fips = counties[fips_col].astype(str).str.zfill(5)
        if state_col in counties.columns:
            states = counties[state_col].astype(str).str.zfill(2)
        else:
            logger.info(f"No '{state_col}' column, deriving state codes from {fips_col}")
            states = fips.str[:2]

        frame = gpd.GeoDataFrame(
            {
                'fips': fips.values,
                'district': counties[name_col].astype(str).values,
                'state_fips': states.values,
            },
            geometry=counties.geometry.values,
            crs=counties.crs,
        )
        if frame.crs is not None and not frame.crs.equals('EPSG:4326'):
            logger.info(f"Reprojecting county boundaries from {frame.crs} to EPSG:4326")
            frame = frame.to_crs('EPSG:4326')
        self.counties = frame.sort_values('fips').reset_index(drop=True)

    @classmethod
    def from_file(cls, counties_path: str, **kwargs) -> 'RegionCatalog':
        """Load boundaries from a shapefile, GeoJSON, GeoPackage or parquet file."""
        logger.info(f"Loading county boundaries from {counties_path}")
        file_ext = os.path.splitext(counties_path)[1].lower()
        if file_ext == '.parquet':
            counties = gpd.read_parquet(counties_path)
        else:
            counties = gpd.read_file(counties_path)
        logger.info(f"Loaded {len(counties)} county boundaries (CRS: {counties.crs})")
        return cls(counties, **kwargs)

    def __len__(self) -> int:
        return len(self.counties)

    def exclude_states(self, state_codes: Iterable[Union[str, int]]) -> 'RegionCatalog':
        """New catalog without the counties of the given states."""
        codes = {normalize_state_code(c) for c in state_codes}
        kept = self.counties[~self.counties['state_fips'].isin(codes)]
        logger.debug(f"Excluded {len(self.counties) - len(kept)} counties in states {sorted(codes)}")
        return RegionCatalog._from_normalized(kept)

    def conus(self) -> 'RegionCatalog':
        return self.exclude_states(NON_CONUS_STATE_FIPS)

    def jurisdictions(self) -> Dict[str, str]:
        """State FIPS code -> state name for every state present."""
        return {code: STATE_NAMES.get(code, code) for code in sorted(self.counties['state_fips'].unique())}

    def for_jurisdiction(self, jurisdiction: Union[str, int]) -> gpd.GeoDataFrame:
        """
        Counties of one state, sorted by FIPS.

        Raises:
            UnknownJurisdictionError: No county matches the jurisdiction
        """
        code = normalize_state_code(jurisdiction)
        selected = self.counties[self.counties['state_fips'] == code]
        if selected.empty:
            raise UnknownJurisdictionError(jurisdiction)
        logger.info(f"Selected {len(selected)} counties for jurisdiction {code} ({state_name(code)})")
        return selected.reset_index(drop=True)

    def regions(self, jurisdiction: Optional[Union[str, int]] = None) -> List[Region]:
        counties = self.counties if jurisdiction is None else self.for_jurisdiction(jurisdiction)
        return [
            Region(row.fips, row.district, row.state_fips, row.geometry)
            for row in counties.itertuples(index=False)
        ]

    @classmethod
    def _from_normalized(cls, counties: gpd.GeoDataFrame) -> 'RegionCatalog':
        catalog = cls.__new__(cls)
        catalog.counties = counties.reset_index(drop=True)
        return catalog

    def __repr__(self) -> str:
        return f"RegionCatalog({len(self)} counties, {len(self.counties['state_fips'].unique())} states)"
