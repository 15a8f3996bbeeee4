"""JSON file storage backend.

All profiles live in one document::

    {"version": 1, "users": {"<user_id>": {"displayName": ..., "history": [...]}}}

The document is loaded at initialize() and rewritten in full (temp file then
rename) on every save, under a single lock.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
from pathlib import Path
from typing import Any

from ..exceptions import StorageUnavailable, TransientIOError
from ..history.models import AddressRecord, UserProfile
from ..history.policy import DEFAULT_MAX_HISTORY_SIZE, enforce_cap, order_history
from .base import StorageBackend

logger = logging.getLogger(__name__)

DOCUMENT_VERSION = 1


def _empty_document() -> dict[str, Any]:
    return {"version": DOCUMENT_VERSION, "users": {}}


class FileBackend(StorageBackend):
    """Single-document storage backend for small deployments."""

    name = "file"

    def __init__(self, path: Path | str, max_history_size: int = DEFAULT_MAX_HISTORY_SIZE) -> None:
        """Create a backend bound to ``path``; nothing is read until initialize().

        Args:
            path: Location of the JSON data file
            max_history_size: Upper bound applied to every saved history
        """
        super().__init__(max_history_size)
        self.path = Path(path)
        self._lock = threading.Lock()
        self._document: dict[str, Any] | None = None

    @property
    def initialized(self) -> bool:
        """True once the document has been loaded."""
        return self._document is not None

    def initialize(self) -> None:
        """Load the data file, creating an empty one when missing."""
        with self._lock:
            if self._document is not None:
                return
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                if not self.path.exists():
                    document = _empty_document()
                    self._write_document(document)
                    logger.info(f"Created data file {self.path}")
                else:
                    document = self._read_document()
            except (OSError, ValueError) as exc:
                logger.error(f"Failed to prepare data file {self.path}: {exc}", exc_info=True)
                raise StorageUnavailable(f"data file {self.path} unavailable: {exc}") from exc

            self._document = document
            logger.info(f"File storage initialized with {len(document['users'])} users from {self.path}")

    def shutdown(self) -> None:
        """Drop the in-memory document; every save is already on disk."""
        with self._lock:
            if self._document is None:
                return
            self._document = None
            logger.info("File storage shut down")

    def save(self, profile: UserProfile) -> None:
        """Replace the user's subtree and persist the whole document."""
        payload = profile.to_dict()
        payload["history"] = [
            record.to_dict() for record in enforce_cap(profile.history, self.max_history_size)
        ]

        with self._lock:
            document = self._document_or_raise()
            users = document["users"]
            previous = users.get(profile.user_id)
            users[profile.user_id] = payload
            try:
                self._write_document(document)
            except (OSError, TypeError, ValueError) as exc:
                if previous is None:
                    users.pop(profile.user_id, None)
                else:
                    users[profile.user_id] = previous
                logger.error(f"Failed to save profile {profile.user_id} to {self.path}: {exc}", exc_info=True)
                raise TransientIOError(f"could not save profile {profile.user_id}") from exc

    def load(self, user_id: str) -> UserProfile | None:
        """Return a fresh copy of the stored profile, if present."""
        with self._lock:
            payload = self._document_or_raise()["users"].get(user_id)
            if payload is None:
                return None
            payload = copy.deepcopy(payload)
        return self._to_profile(user_id, payload)

    def find_by_name(self, name: str) -> UserProfile | None:
        """Case-insensitive display-name search over all stored profiles."""
        wanted = name.lower()
        with self._lock:
            candidates = []
            for user_id, payload in self._document_or_raise()["users"].items():
                if not isinstance(payload, dict):
                    logger.warning(f"Skipping malformed profile entry {user_id!r} in {self.path}")
                    continue
                if str(payload.get("displayName") or "").lower() == wanted:
                    candidates.append((user_id, copy.deepcopy(payload)))
        if not candidates:
            return None

        profiles = [self._to_profile(user_id, payload) for user_id, payload in candidates]
        profiles.sort(key=lambda profile: profile.user_id)
        # Stable sort: among equally recent profiles the lowest user id stays first
        profiles.sort(
            key=lambda profile: profile.last_seen.timestamp() if profile.last_seen else float("-inf"),
            reverse=True,
        )
        return profiles[0]

    def last_record(self, user_id: str) -> AddressRecord | None:
        """Return the head of the canonical history order."""
        profile = self.load(user_id)
        if profile is None:
            return None
        return profile.latest_record

    def _document_or_raise(self) -> dict[str, Any]:
        if self._document is None:
            raise StorageUnavailable("file storage backend is not initialized")
        return self._document

    def _to_profile(self, user_id: str, payload: dict[str, Any]) -> UserProfile:
        try:
            profile = UserProfile.from_dict(user_id, payload)
        except ValueError as exc:
            logger.error(f"Stored profile {user_id} is malformed: {exc}")
            raise TransientIOError(f"stored profile {user_id} is malformed") from exc
        profile.history = order_history(profile.history)
        return profile

    def _read_document(self) -> dict[str, Any]:
        text = self.path.read_text(encoding="utf-8")
        if not text.strip():
            return _empty_document()
        document = json.loads(text)
        if not isinstance(document, dict):
            raise ValueError("data file root is not an object")
        users = document.setdefault("users", {})
        if not isinstance(users, dict):
            raise ValueError("data file 'users' entry is not an object")
        document.setdefault("version", DOCUMENT_VERSION)
        return document

    def _write_document(self, document: dict[str, Any]) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        payload = json.dumps(document, ensure_ascii=False, indent=2)
        tmp_path.write_text(payload, encoding="utf-8")
        tmp_path.replace(self.path)


__all__ = ["FileBackend"]
