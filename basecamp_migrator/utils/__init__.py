"""Shared utilities for API access and logging."""

__all__ = [
    "api",
    "logging",
]
