"""Expose constructed client wrappers."""

from .classification import (
    ClassificationClient,
    ClassificationService,
    ClassificationServiceError,
)
from .sqlite_store import SQLiteStore

__all__ = [
    "ClassificationClient",
    "ClassificationService",
    "ClassificationServiceError",
    "SQLiteStore",
]
