"""
Configuration module for GRIDMET county summaries.

Settings come from defaults, then an optional YAML file, then environment
variables, then an explicit override dictionary. The per-invocation request
(state, dates, variables, mode) is a separate SummaryRequest.
"""

import logging
import multiprocessing as mp
import os
from dataclasses import dataclass, field
from datetime import date, timedelta
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import psutil
import yaml

from .frames import to_date
from .regions import NON_CONUS_STATE_FIPS, normalize_state_code, state_name
from .summary import (ANOMALY_OUTPUT_VARIABLES, DERIVED_OUTPUT_VARIABLES,
                      LEGACY_OUTPUT_VARIABLES, order_variables)

logger = logging.getLogger(__name__)

MODES = ('derived', 'anomaly', 'both')


def _env_bool(name: str, default: Any) -> bool:
    return str(os.getenv(name, str(default))).lower() in ('true', '1', 'yes')


class GridmetConfig:
    """Configuration class for the GRIDMET processing run."""

    def __init__(self, config_file: Optional[str] = None, config_dict: Optional[Dict[str, Any]] = None):
        """
        Initialize configuration with defaults, YAML file, and optional overrides.

        Args:
            config_file: Path to YAML configuration file (defaults to 'config.yaml'
                in the project root)
            config_dict: Optional dictionary to override settings
        """
        self.project_root = Path(__file__).parent.parent

        yaml_config = self._load_yaml_config(config_file)
        self._set_configuration(yaml_config)

        if config_dict:
            for key, value in config_dict.items():
                if not hasattr(self, key):
                    raise ValueError(f"Unknown configuration key: {key}")
                setattr(self, key, value)

    def _load_yaml_config(self, config_file: Optional[str] = None) -> Dict[str, Any]:
        """Load configuration from YAML file."""
        if config_file is None:
            config_file = self.project_root / 'config.yaml'
        else:
            config_file = Path(config_file)

        if not config_file.exists():
            logger.debug(f"No YAML config file found at {config_file}, using defaults")
            return {}

        with open(config_file, 'r') as f:
            yaml_config = yaml.safe_load(f) or {}
        if not isinstance(yaml_config, dict):
            raise ValueError(f"Configuration file {config_file} must contain a mapping")
        logger.info(f"Loaded configuration from {config_file}")
        return yaml_config

    def _set_configuration(self, yaml_config: Dict[str, Any]):
        """Set configuration values from YAML config and environment variables."""
        # Paths
        self.data_path = os.getenv('GRIDMET_DATA_PATH',
                                   yaml_config.get('data_path', str(self.project_root / 'data' / 'gridmet_*.nc')))
        self.counties_path = os.getenv('GRIDMET_COUNTIES_PATH',
                                       yaml_config.get('counties_path',
                                                       str(self.project_root / 'data' / 'tl_2016_us_county.shp')))
        self.output_dir = os.getenv('GRIDMET_OUTPUT_DIR', yaml_config.get('output_dir', 'output/gridmet'))
        self.output_prefix = os.getenv('GRIDMET_OUTPUT_PREFIX', yaml_config.get('output_prefix', 'gridmet'))

        # Processing configuration
        self.parallel_processing = _env_bool('GRIDMET_PARALLEL_PROCESSING',
                                             yaml_config.get('parallel_processing', True))
        self.use_dask_cluster = _env_bool('GRIDMET_USE_DASK_CLUSTER',
                                          yaml_config.get('use_dask_cluster', False))
        self.max_processes = int(os.getenv('GRIDMET_MAX_PROCESSES',
                                           str(yaml_config.get('max_processes', max(1, mp.cpu_count() - 1)))))
        self.threads_per_worker = int(yaml_config.get('threads_per_worker', 1))
        self.memory_limit = os.getenv('GRIDMET_MEMORY_LIMIT',
                                      yaml_config.get('memory_limit',
                                                      f'{int(psutil.virtual_memory().total / (1024**3))}GB'))
        yaml_chunk_size = yaml_config.get('chunk_size', {})
        self.chunk_size = {'time': int(os.getenv('GRIDMET_CHUNK_SIZE', str(yaml_chunk_size.get('time', 365))))}

        # Store retries
        self.store_retries = int(yaml_config.get('store_retries', 3))
        self.retry_base_delay = float(yaml_config.get('retry_base_delay', 1.0))
        self.retry_max_delay = float(yaml_config.get('retry_max_delay', 30.0))

        # Science options
        self.legacy_logpr = _env_bool('GRIDMET_LEGACY_LOGPR', yaml_config.get('legacy_logpr', False))
        self.excluded_state_fips = list(yaml_config.get('excluded_state_fips', NON_CONUS_STATE_FIPS))
        self.climatology_start = yaml_config.get('climatology_start', '2000-01-01')
        self.climatology_end = yaml_config.get('climatology_end')

        # Logging
        self.log_level = os.getenv('GRIDMET_LOG_LEVEL', yaml_config.get('log_level', 'INFO'))
        self.log_file = yaml_config.get('log_file')

    @property
    def n_workers(self) -> int:
        return self.max_processes if self.parallel_processing else 1

    def validate(self) -> bool:
        """
        Validate configuration settings.

        Raises:
            ValueError: A setting is out of range
        """
        errors = []
        if self.max_processes <= 0:
            errors.append("max_processes must be positive")
        if self.threads_per_worker <= 0:
            errors.append("threads_per_worker must be positive")
        if self.store_retries < 0:
            errors.append("store_retries cannot be negative")
        if self.retry_base_delay < 0 or self.retry_max_delay < 0:
            errors.append("retry delays cannot be negative")
        if self.log_level.upper() not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            errors.append(f"Invalid log level: {self.log_level}")
        try:
            start = to_date(self.climatology_start)
            if self.climatology_end is not None and to_date(self.climatology_end) <= start:
                errors.append("climatology_end must be after climatology_start")
        except ValueError as e:
            errors.append(f"Invalid climatology dates: {e}")

        if errors:
            raise ValueError("Invalid configuration: " + "; ".join(errors))
        return True

    def save_config(self, output_file: Optional[str] = None):
        """Save current configuration to YAML file."""
        if output_file is None:
            output_file = self.project_root / 'config.yaml'

        with open(output_file, 'w') as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, indent=2)

        logger.info(f"Configuration saved to {output_file}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            'data_path': self.data_path,
            'counties_path': self.counties_path,
            'output_dir': self.output_dir,
            'output_prefix': self.output_prefix,
            'parallel_processing': self.parallel_processing,
            'use_dask_cluster': self.use_dask_cluster,
            'max_processes': self.max_processes,
            'threads_per_worker': self.threads_per_worker,
            'memory_limit': self.memory_limit,
            'chunk_size': self.chunk_size,
            'store_retries': self.store_retries,
            'retry_base_delay': self.retry_base_delay,
            'retry_max_delay': self.retry_max_delay,
            'legacy_logpr': self.legacy_logpr,
            'excluded_state_fips': list(self.excluded_state_fips),
            'climatology_start': str(self.climatology_start),
            'climatology_end': None if self.climatology_end is None else str(self.climatology_end),
            'log_level': self.log_level,
            'log_file': self.log_file,
        }

    def __repr__(self) -> str:
        """String representation of configuration."""
        return (f"GridmetConfig(data_path='{self.data_path}', "
                f"output_dir='{self.output_dir}', "
                f"parallel={self.parallel_processing}, "
                f"max_processes={self.max_processes})")


@dataclass(frozen=True)
class SummaryRequest:
    """One county summary request: state, date range [start, end), variables and mode."""
    jurisdiction: str
    start: date
    end: date
    variables: Optional[Tuple[str, ...]] = None
    mode: str = 'derived'
    legacy_logpr: bool = field(default=False)

    def __post_init__(self):
        object.__setattr__(self, 'start', to_date(self.start))
        object.__setattr__(self, 'end', to_date(self.end))
        object.__setattr__(self, 'jurisdiction', str(self.jurisdiction))
        if self.mode not in MODES:
            raise ValueError(f"Invalid mode: {self.mode}. Valid options: {list(MODES)}")
        if self.end <= self.start:
            raise ValueError(f"End date {self.end} must be after start date {self.start} (end is exclusive)")
        if self.variables is not None:
            variables = tuple(self.variables)
            unknown = set(variables) - set(self.available_variables())
            if unknown:
                raise ValueError(f"Invalid variables: {sorted(unknown)}. "
                                 f"Valid options: {self.available_variables()}")
            object.__setattr__(self, 'variables', variables)

    @classmethod
    def from_inclusive(cls, jurisdiction, start, end_inclusive, **kwargs) -> 'SummaryRequest':
        """Build a request from an inclusive end date, as typed by a user."""
        return cls(jurisdiction, to_date(start), to_date(end_inclusive) + timedelta(days=1), **kwargs)

    def available_variables(self) -> list:
        variables = []
        if self.mode in ('derived', 'both'):
            variables += DERIVED_OUTPUT_VARIABLES
            if self.legacy_logpr:
                variables += LEGACY_OUTPUT_VARIABLES
        if self.mode in ('anomaly', 'both'):
            variables += ANOMALY_OUTPUT_VARIABLES if self.legacy_logpr else ANOMALY_OUTPUT_VARIABLES[:3]
        return variables

    @property
    def output_variables(self) -> list:
        if self.variables is None:
            return order_variables(self.available_variables())
        return order_variables(self.variables)

    @property
    def needs_anomalies(self) -> bool:
        return self.mode in ('anomaly', 'both')

    @property
    def state_fips(self) -> str:
        return normalize_state_code(self.jurisdiction)

    @property
    def end_inclusive(self) -> date:
        return self.end - timedelta(days=1)

    def output_filename(self, prefix: str = 'gridmet', extension: str = 'csv') -> str:
        """<prefix>_<state name without spaces>_<start>_<inclusive end>.<extension>"""
        name = ''.join(state_name(self.jurisdiction).split())
        stem = f"{prefix}_{name}_{self.start.isoformat()}_{self.end_inclusive.isoformat()}"
        return f"{stem}.{extension}" if extension else stem
