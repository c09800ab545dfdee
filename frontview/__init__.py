"""frontview: analytics backend for the exposure dashboard."""

__version__ = "1.0.0"
