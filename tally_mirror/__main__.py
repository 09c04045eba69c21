"""
Main entry point for running tally_mirror as a module.

Usage:
    python -m tally_mirror [options] COMMAND
"""
import sys
from .sync import main

if __name__ == "__main__":
    sys.exit(main())
