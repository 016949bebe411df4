"""
Utility functions for GRIDMET processing.
"""

import logging
from pathlib import Path

import psutil

logger = logging.getLogger(__name__)


def log_memory_usage(stage: str = "") -> None:
    """
    Log current memory usage.

    Args:
        stage: Description of current processing stage
    """
    process = psutil.Process()
    memory_mb = process.memory_info().rss / 1024**2
    system_memory = psutil.virtual_memory()
    available_gb = system_memory.available / 1024**3

    stage_text = f" {stage}" if stage else ""
    logger.info(f"Memory usage{stage_text}: {memory_mb:.1f} MB "
                f"({system_memory.percent:.1f}% of system used, {available_gb:.1f} GB available)")


def ensure_directory_exists(path) -> Path:
    """
    Ensure a directory exists, creating it if necessary.

    Args:
        path: Directory path to ensure exists
    """
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path
