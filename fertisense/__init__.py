"""FertiSense fertilizer recommendation engine."""
__version__ = "1.0.0"
