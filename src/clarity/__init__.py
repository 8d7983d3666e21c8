"""Clarity personal health record backend."""

__version__ = "0.1.0"
