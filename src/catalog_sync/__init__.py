"""Catalog synchronization engine: keeps a target platform in step with a source of truth."""

__version__ = "0.1.0"
