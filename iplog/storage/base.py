"""Storage contract shared by the file and relational backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from ..exceptions import ConfigurationError, StorageError, StorageUnavailable, TransientIOError
from ..history.models import AddressRecord, UserProfile
from ..history.policy import DEFAULT_MAX_HISTORY_SIZE


class StorageBackend(ABC):
    """Capability interface for persisting user address histories.

    Every implementation orders history most-recent-first by ``last_seen``,
    caps it at ``max_history_size`` on save, and keeps a save of one user
    atomic with respect to concurrent saves of the same user.
    """

    name = "abstract"

    def __init__(self, max_history_size: int = DEFAULT_MAX_HISTORY_SIZE) -> None:
        if max_history_size < 1:
            raise ConfigurationError(f"max_history_size must be at least 1, got {max_history_size}")
        self.max_history_size = max_history_size

    @property
    @abstractmethod
    def initialized(self) -> bool:
        """True between a successful initialize() and shutdown()."""

    @abstractmethod
    def initialize(self) -> None:
        """Prepare the medium; idempotent.

        Raises:
            StorageUnavailable: If the medium cannot be prepared
        """

    @abstractmethod
    def shutdown(self) -> None:
        """Release every held resource; idempotent and safe after a failed initialize()."""

    @abstractmethod
    def save(self, profile: UserProfile) -> None:
        """Upsert ``profile`` and its whole history.

        Raises:
            TransientIOError: If the write failed (prior state is unchanged)
        """

    @abstractmethod
    def load(self, user_id: str) -> UserProfile | None:
        """Return the stored profile for ``user_id`` or None."""

    @abstractmethod
    def find_by_name(self, name: str) -> UserProfile | None:
        """Return a profile whose display name matches ``name`` case-insensitively.

        When several users share the name, the most recently seen one wins,
        then the lowest user id.
        """

    @abstractmethod
    def last_record(self, user_id: str) -> AddressRecord | None:
        """Return the head of the user's history, or None."""

    def is_recorded(self, user_id: str, address: str) -> bool:
        """Return True iff ``address`` is the user's most recent record.

        This deliberately ignores older history entries.
        """
        record = self.last_record(user_id)
        return record is not None and record.address == address

    def _require_initialized(self) -> None:
        if not self.initialized:
            raise StorageUnavailable(f"{self.name} storage backend is not initialized")

    def __enter__(self) -> StorageBackend:
        """Initialise on context entry."""
        self.initialize()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Shut down on context exit."""
        self.shutdown()


__all__ = [
    "ConfigurationError",
    "StorageBackend",
    "StorageError",
    "StorageUnavailable",
    "TransientIOError",
]
