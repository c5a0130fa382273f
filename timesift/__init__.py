"""timesift - in-process search for a personal time-tracking store."""

__version__ = "0.1.0"
