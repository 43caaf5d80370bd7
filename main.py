#!/usr/bin/env python3
"""
Main entry point for the VOR rehabilitation core
Run this script from the project root directory

Examples:
    python main.py --replay samples.csv --level 2 --output exports/ --skip-calibration
    python main.py --replay samples.csv --level 2   # needs calibration.load_saved and a saved calibration
    python main.py --camera --level 1 --skip-calibration --max-frames 600
"""

import sys

from vor_rehab.main import main

if __name__ == "__main__":
    sys.exit(main())
