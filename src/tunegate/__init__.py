"""Tunegate: edge gateway for a music-player web client."""

__version__ = "0.1.0"
