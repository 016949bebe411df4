#!/usr/bin/env python3
"""
Main script for summarizing GRIDMET data by county using the gridmet_processing module.
"""

import sys
from pathlib import Path

# Add the current directory to Python path to import local module
sys.path.insert(0, str(Path(__file__).parent))

from gridmet_processing.cli import main


if __name__ == "__main__":
    sys.exit(main())
