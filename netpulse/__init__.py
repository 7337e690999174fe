"""NetPulse: device discovery and health monitoring engine."""

__version__ = "0.1.0"
