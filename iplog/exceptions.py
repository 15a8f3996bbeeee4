"""Exception hierarchy shared by settings, storage backends and the CLI."""

from __future__ import annotations


class ConfigurationError(ValueError):
    """Invalid configuration detected while building settings or a backend."""


class StorageError(Exception):
    """Base class for storage failures."""


class StorageUnavailable(StorageError):
    """The backing medium could not be prepared or the backend is not initialised.

    Callers should disable dependent functionality instead of crashing.
    """


class TransientIOError(StorageError):
    """A single storage operation failed; nothing partial was persisted."""


__all__ = ["ConfigurationError", "StorageError", "StorageUnavailable", "TransientIOError"]
