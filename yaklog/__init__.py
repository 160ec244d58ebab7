"""Append-style message log for coordinating agents over HTTP."""

__version__ = "0.1.0"
