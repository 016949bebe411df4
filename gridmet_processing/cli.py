"""
Command-line interface for GRIDMET county summaries.
"""

import argparse
import logging
import sys
from typing import List, Optional

import pandas as pd

from .config import MODES, GridmetConfig, SummaryRequest
from .errors import GridmetError
from .frames import to_date
from .logging_utils import setup_logging
from .processors import GridmetProcessor
from .regions import RegionCatalog
from .store import XarrayRasterStore
from .summary import CANONICAL_VARIABLE_ORDER

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Summarize daily GRIDMET climate variables by county for one state'
    )
    parser.add_argument(
        '--state',
        type=str,
        help='State FIPS code, postal code or name (e.g. 06, CA, California)'
    )
    parser.add_argument(
        '--start',
        type=str,
        help='First date to include, YYYY-MM-DD (default: one month before the latest date in the store)'
    )
    parser.add_argument(
        '--end',
        type=str,
        help='Last date to include, YYYY-MM-DD, inclusive (default: latest date in the store)'
    )
    parser.add_argument(
        '--variables',
        nargs='+',
        choices=CANONICAL_VARIABLE_ORDER,
        help='Variables to export (default: every variable of the selected mode)'
    )
    parser.add_argument(
        '--mode',
        type=str,
        default='derived',
        choices=MODES,
        help='Export derived values, standardized anomalies, or both (default: derived)'
    )
    parser.add_argument(
        '--data-path',
        type=str,
        help='GRIDMET NetCDF file or glob pattern (overrides config)'
    )
    parser.add_argument(
        '--counties',
        type=str,
        help='County boundaries file (overrides config)'
    )
    parser.add_argument(
        '--output-dir',
        type=str,
        help='Output directory for the CSV (overrides config)'
    )
    parser.add_argument(
        '--config',
        type=str,
        help='Path to a YAML configuration file'
    )
    parser.add_argument(
        '--no-parallel',
        action='store_true',
        help='Disable parallel processing'
    )
    parser.add_argument(
        '--dask-cluster',
        action='store_true',
        help='Run the per-frame stages on a local Dask cluster'
    )
    parser.add_argument(
        '--max-processes',
        type=int,
        help='Maximum number of parallel workers'
    )
    parser.add_argument(
        '--legacy-logpr',
        action='store_true',
        help='Also export log precipitation (logpr, logpr_anom)'
    )
    parser.add_argument(
        '--list-states',
        action='store_true',
        help='List the states available in the county boundaries and exit'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable debug logging'
    )
    return parser


def config_overrides(args: argparse.Namespace) -> dict:
    overrides = {}
    if args.data_path:
        overrides['data_path'] = args.data_path
    if args.counties:
        overrides['counties_path'] = args.counties
    if args.output_dir:
        overrides['output_dir'] = args.output_dir
    if args.no_parallel:
        overrides['parallel_processing'] = False
    if args.dask_cluster:
        overrides['use_dask_cluster'] = True
    if args.max_processes:
        overrides['max_processes'] = args.max_processes
    if args.legacy_logpr:
        overrides['legacy_logpr'] = True
    return overrides


def resolve_dates(args: argparse.Namespace, store: XarrayRasterStore):
    """Inclusive (start, end) from the arguments, defaulting to the last month of data."""
    if args.start and args.end:
        return to_date(args.start), to_date(args.end)
    latest = store.latest_date()
    end = to_date(args.end) if args.end else latest
    start = to_date(args.start) if args.start else (pd.Timestamp(end) - pd.DateOffset(months=1)).date()
    return start, end


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point; returns the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = GridmetConfig(args.config, config_overrides(args))
        setup_logging(config, args.verbose)
        config.validate()
        catalog = RegionCatalog.from_file(config.counties_path)

        if args.list_states:
            for code, name in catalog.exclude_states(config.excluded_state_fips).jurisdictions().items():
                print(f"{code}  {name}")
            return 0

        if not args.state:
            parser.error("--state is required")

        store = XarrayRasterStore.from_netcdf(
            config.data_path, config.chunk_size, retries=config.store_retries,
            base_delay=config.retry_base_delay, max_delay=config.retry_max_delay,
        )
        start, end = resolve_dates(args, store)
        request = SummaryRequest.from_inclusive(
            args.state, start, end,
            variables=args.variables, mode=args.mode, legacy_logpr=config.legacy_logpr,
        )

        logger.info(f"Configuration: {config}")
        processor = GridmetProcessor(config, store, catalog)
        output_path = processor.process(request)
        print(f"Summary written to {output_path}")

    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return 130
    except (GridmetError, ValueError, FileNotFoundError) as e:
        logger.error(f"Error: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
