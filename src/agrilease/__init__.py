"""AgriLease - equipment lease and rental coordination."""

__version__ = "0.1.0"
