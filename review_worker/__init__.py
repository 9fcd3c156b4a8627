"""Asynchronous job worker for AI review replies and text analysis."""

__version__ = "0.1.0"
