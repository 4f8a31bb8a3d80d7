"""Entry point: ``python -m activity_tracker``."""

import sys

from activity_tracker.cli import main

if __name__ == "__main__":
    sys.exit(main())
