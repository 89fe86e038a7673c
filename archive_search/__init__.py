"""Citation-aware search index over local research and captured-content archives."""

__version__ = "0.1.0"
