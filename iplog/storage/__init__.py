"""Storage backends for per-user address history."""

from __future__ import annotations

import logging

from ..exceptions import ConfigurationError, StorageError, StorageUnavailable, TransientIOError
from ..settings import IPLogSettings
from .base import StorageBackend
from .file_backend import FileBackend

logger = logging.getLogger(__name__)


def create_backend(settings: IPLogSettings) -> StorageBackend:
    """Build the backend selected by ``settings.storage_type``.

    The backend is returned uninitialised.

    Raises:
        ConfigurationError: If the storage type is unknown or its settings are invalid
    """
    storage_type = settings.storage_type.lower()
    if storage_type == "file":
        logger.info(f"Using file storage at {settings.data_file}")
        return FileBackend(settings.data_file, max_history_size=settings.max_history_size)
    if storage_type == "relational":
        from .relational import RelationalBackend

        settings.database.validate()
        logger.info("Using relational storage")
        return RelationalBackend(settings.database, max_history_size=settings.max_history_size)
    raise ConfigurationError(f"unknown storage type {settings.storage_type!r}")


__all__ = [
    "ConfigurationError",
    "FileBackend",
    "StorageBackend",
    "StorageError",
    "StorageUnavailable",
    "TransientIOError",
    "create_backend",
]
