"""Main entry point for the flowlog CLI when run as a module."""

import sys

from flowlog.cli import main

if __name__ == "__main__":
    sys.exit(main())
