"""
Transit Nexus Import Module Entry Point

Allows running the dataset import via:
    python -m transitnexus.ingest [args]
"""

import sys

from .orchestrator import main

if __name__ == "__main__":
    sys.exit(main())
