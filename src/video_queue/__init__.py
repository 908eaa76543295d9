"""Lease-based video generation task queue."""

__version__ = "0.1.0"
