"""TareAI external calendar sync core."""

__version__ = "0.1.0"
