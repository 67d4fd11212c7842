"""Pulse Shield: adaptive request-defense core."""

__version__ = "0.1.0"
