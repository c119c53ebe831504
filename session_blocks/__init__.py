"""Block assignment and grouping engine for training session planning."""

__version__ = "1.0.0"
