"""Real-time change-feed layer for the student placement portal."""

__version__ = "0.1.0"
