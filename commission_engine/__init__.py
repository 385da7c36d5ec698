"""Commission calculation and lifecycle engine."""

__version__ = "1.0.0"
