"""Ink - optical disc backup pipeline."""

__version__ = "0.1.0"
