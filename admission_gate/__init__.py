"""Sliding-window request admission gate backed by a shared store."""

__version__ = "0.1.0"
