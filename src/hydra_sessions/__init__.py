"""Parallel worker session orchestration."""

__version__ = "1.3.0"

__all__ = ["__version__"]
