"""Live match scanner: cached live-event feed with data validation and scoring."""

__version__ = "1.0.0"
