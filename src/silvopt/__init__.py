"""Stand trajectory simulation and harvest schedule optimization."""

__version__ = "0.1.0"
