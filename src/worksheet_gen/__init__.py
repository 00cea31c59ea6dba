"""Exact-count exercise task generation pipeline."""

__version__ = "0.1.0"
