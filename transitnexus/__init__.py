"""Transit Nexus: transport dataset import, realtime processing and aggregated queries."""

__version__ = "0.1.0"
