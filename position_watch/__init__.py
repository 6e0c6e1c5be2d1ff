"""Watches web-rendered trading positions and alerts on changes."""

__version__ = "0.1.0"
