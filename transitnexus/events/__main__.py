"""
Allows running the queue consumers via:
    python -m transitnexus.events [command]
"""

import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())
