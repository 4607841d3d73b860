"""Shared helpers: validation and metrics."""
