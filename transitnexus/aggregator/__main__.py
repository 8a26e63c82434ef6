"""
Allows running aggregated queries via:
    python -m transitnexus.aggregator [command] [identifier]
"""

import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())
