"""Main entry point for the rollout CLI when run as a module."""

import sys

from canaryctl.cli import main

if __name__ == "__main__":
    sys.exit(main())
