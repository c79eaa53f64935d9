#!/usr/bin/env python3
"""
Differential Array Analysis Pipeline

Main entry point for running the differential analysis of one dataset.
Equivalent to the installed ``neuroarray`` command.

Usage:
    python main.py                              # Run ad_neurons with defaults
    python main.py --dataset induced_neurons    # Methylation dataset
    python main.py --skip-plots                 # Tables only
    python main.py --help                       # All options
"""

import sys

from neuroarray.cli import main

if __name__ == "__main__":
    sys.exit(main())
