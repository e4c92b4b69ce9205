"""Warehouse storage tiering: age-based archival, expiry and archive retrieval."""

__version__ = "0.1.0"

from . import audit, common, lifecycle, retrieval, storage

__all__ = ["audit", "common", "lifecycle", "retrieval", "storage", "__version__"]
