"""Ingest and query service on top of a storage backend."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterator, Optional

from .enrichment.lookup import GeoLookup
from .exceptions import StorageError
from .history.models import UserProfile
from .history.policy import SightingOutcome, apply_sighting, new_profile
from .settings import IPLogSettings
from .storage.base import StorageBackend
from .utils.timestamps import utcnow

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _UserLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    holders: int = 0


class AddressTracker:
    """Record address sightings and answer profile queries.

    Sightings of the same user are serialised inside this process so the
    load/apply/save sequence never loses an update.
    """

    def __init__(
        self,
        storage: StorageBackend,
        lookup: GeoLookup | None = None,
        *,
        max_history_size: int | None = None,
        check_duplicates: bool = True,
        query_location: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Bind the tracker to an initialised backend.

        Args:
            storage: Backend holding the profiles
            lookup: Enrichment collaborator, or None to record without enrichment
            max_history_size: History cap; defaults to the backend's cap
            check_duplicates: Skip the lookup for an address already in the history
            query_location: Call ``lookup`` at all
            clock: Source of observation timestamps
        """
        self.storage = storage
        self.lookup = lookup
        self.max_history_size = max_history_size or storage.max_history_size
        self.check_duplicates = check_duplicates
        self.query_location = query_location
        self.clock = clock
        self._locks: dict[str, _UserLock] = {}
        self._locks_guard = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: IPLogSettings,
        storage: StorageBackend,
        lookup: GeoLookup | None = None,
    ) -> AddressTracker:
        """Build a tracker using the feature toggles of ``settings``."""
        return cls(
            storage,
            lookup,
            max_history_size=settings.max_history_size,
            check_duplicates=settings.check_duplicate,
            query_location=settings.query_location,
        )

    def record_sighting(self, user_id: str, display_name: str, address: str) -> SightingOutcome:
        """Apply one sighting to the user's profile and persist it.

        Raises:
            StorageUnavailable: If the backend is not initialised
            TransientIOError: If loading or saving the profile failed
        """
        lookup_fn = self.lookup.lookup if self.lookup is not None and self.query_location else None

        with self._user_lock(user_id):
            profile = self.storage.load(user_id)
            if profile is None:
                logger.info(f"First sighting of user {user_id} ({display_name})")
                profile = new_profile(user_id, display_name)
            outcome = apply_sighting(
                profile,
                display_name,
                address,
                self.clock(),
                lookup_fn,
                self.max_history_size,
                check_duplicates=self.check_duplicates,
            )
            self.storage.save(outcome.profile)

        if outcome.new_address:
            logger.info(f"Recorded new address {address} for {display_name} ({user_id})")
        else:
            logger.debug(f"Refreshed address {address} for {display_name} ({user_id})")
        return outcome

    def find_by_name(self, name: str) -> UserProfile | None:
        """Return the profile whose display name matches ``name`` case-insensitively."""
        return self.storage.find_by_name(name)

    def get_profile(self, user_id: str) -> UserProfile | None:
        return self.storage.load(user_id)

    @contextmanager
    def _user_lock(self, user_id: str) -> Iterator[None]:
        with self._locks_guard:
            entry = self._locks.get(user_id)
            if entry is None:
                entry = self._locks[user_id] = _UserLock()
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            # Entries live only while some thread holds or waits for them
            with self._locks_guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._locks[user_id]


class SightingDispatcher:
    """Run tracker operations off the caller's thread.

    Operations run on a worker pool. Storage failures are logged and the
    future resolves to None. Callbacks always run on one completion thread,
    in the order their operations finished.
    """

    def __init__(self, tracker: AddressTracker, workers: int = 4) -> None:
        if workers < 1:
            raise ValueError(f"workers must be at least 1, got {workers}")
        self.tracker = tracker
        self._workers = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="iplog-worker")
        self._completion = ThreadPoolExecutor(max_workers=1, thread_name_prefix="iplog-completion")

    @classmethod
    def from_settings(cls, settings: IPLogSettings, tracker: AddressTracker) -> SightingDispatcher:
        """Build a dispatcher sized by ``settings.workers``."""
        return cls(tracker, workers=settings.workers)

    def submit_sighting(
        self,
        user_id: str,
        display_name: str,
        address: str,
        callback: Optional[Callable[[Optional[SightingOutcome]], Any]] = None,
    ) -> Future[Optional[SightingOutcome]]:
        """Queue a sighting; the future resolves to the outcome or None on failure."""
        return self._submit(self._run_sighting, (user_id, display_name, address), callback)

    def submit_query(
        self,
        name: str,
        callback: Optional[Callable[[Optional[UserProfile]], Any]] = None,
    ) -> Future[Optional[UserProfile]]:
        """Queue a lookup by display name; resolves to the profile or None."""
        return self._submit(self._run_query, (name,), callback)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work, then drain the worker and completion pools."""
        self._workers.shutdown(wait=wait)
        self._completion.shutdown(wait=wait)

    def _submit(self, fn: Callable[..., Any], args: tuple, callback: Optional[Callable[[Any], Any]]) -> Future:
        future = self._workers.submit(fn, *args)
        if callback is not None:
            future.add_done_callback(lambda done: self._schedule_callback(callback, done))
        return future

    def _schedule_callback(self, callback: Callable[[Any], Any], done: Future) -> None:
        result = None if done.cancelled() or done.exception() is not None else done.result()
        try:
            self._completion.submit(self._deliver, callback, result)
        except RuntimeError:
            logger.warning("Completion pool already shut down; dropping callback")

    @staticmethod
    def _deliver(callback: Callable[[Any], Any], result: Any) -> None:
        try:
            callback(result)
        except Exception:
            logger.exception("Completion callback raised")

    def _run_sighting(self, user_id: str, display_name: str, address: str) -> Optional[SightingOutcome]:
        try:
            return self.tracker.record_sighting(user_id, display_name, address)
        except StorageError as exc:
            logger.error(f"Failed to record address {address} for {display_name} ({user_id}): {exc}")
            return None
        except Exception:
            logger.exception(f"Unexpected error recording address {address} for {display_name} ({user_id})")
            return None

    def _run_query(self, name: str) -> Optional[UserProfile]:
        try:
            return self.tracker.find_by_name(name)
        except StorageError as exc:
            logger.error(f"Failed to query profile {name!r}: {exc}")
            return None
        except Exception:
            logger.exception(f"Unexpected error querying profile {name!r}")
            return None

    def __enter__(self) -> SightingDispatcher:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.shutdown(wait=True)


__all__ = ["AddressTracker", "SightingDispatcher"]
