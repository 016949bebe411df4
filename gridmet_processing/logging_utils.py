"""
Logging Utilities Module

Root logger configuration for command-line runs.
"""

import logging
import sys

NOISY_LIBRARIES = ('distributed', 'dask', 'tornado', 'rasterio', 'fiona', 'pyogrio')


def setup_logging(config, verbose: bool = False) -> None:
    """
    Set up logging configuration based on config and command line options.

    Args:
        config: GridmetConfig (log_level and log_file are used)
        verbose: Enable debug logging
    """
    if verbose:
        log_level = logging.DEBUG
    else:
        log_level = getattr(logging, str(getattr(config, 'log_level', 'INFO')).upper())

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Clear existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    log_file = getattr(config, 'log_file', None)
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    for name in NOISY_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)
