"""
Entry point for running mediakiln as a module: python -m mediakiln

This allows the package to be executed directly:
    python -m mediakiln convert movie.mov --format webm-vp9
    python -m mediakiln --help
"""

import sys

from mediakiln.cli import main

if __name__ == "__main__":
    sys.exit(main())
