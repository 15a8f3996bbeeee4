"""End-to-end sighting scenarios run against every storage backend."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable
from unittest.mock import Mock

import pytest

from iplog.enrichment.lookup import LookupResult, LookupUnavailable
from iplog.history.models import AddressRecord, UserProfile
from iplog.storage.base import StorageBackend
from iplog.tracker import AddressTracker

pytestmark = pytest.mark.integration

T0 = datetime(2024, 9, 28, 12, 0, tzinfo=timezone.utc)


def test_sighting_scenario(any_backend: StorageBackend, clock: Callable[[], datetime]) -> None:
    """Dedup, lookup skipping, failed enrichment and cap behave the same on both backends."""
    lookup = Mock()
    lookup.lookup.return_value = LookupResult(location="X", isp="Y")
    tracker = AddressTracker(any_backend, lookup, clock=clock)

    tracker.record_sighting("u1", "Alice", "1.2.3.4")
    first = any_backend.load("u1")
    assert len(first.history) == 1
    assert first.history[0].location == "X"
    assert first.current_isp == "Y"

    tracker.record_sighting("u1", "Alice", "1.2.3.4")
    again = any_backend.load("u1")
    assert len(again.history) == 1
    assert again.history[0].last_seen > first.history[0].last_seen
    assert lookup.lookup.call_count == 1

    lookup.lookup.side_effect = LookupUnavailable("timeout")
    tracker.record_sighting("u1", "Alice", "5.6.7.8")
    degraded = any_backend.load("u1")
    assert [record.address for record in degraded.history] == ["5.6.7.8", "1.2.3.4"]
    assert degraded.history[0].location is None
    assert degraded.history[0].isp is None
    assert degraded.current_location is None

    lookup.lookup.side_effect = None
    for address in ("9.9.9.1", "9.9.9.2"):
        tracker.record_sighting("u1", "Alice", address)
    capped = any_backend.load("u1")
    assert len(capped.history) == any_backend.max_history_size == 3
    assert "1.2.3.4" not in {record.address for record in capped.history}
    assert capped.history[0].address == "9.9.9.2"

    assert any_backend.find_by_name("alice").user_id == "u1"
    assert any_backend.load("unknown") is None


def test_touched_record_moves_to_head(any_backend: StorageBackend, clock: Callable[[], datetime]) -> None:
    """Refreshing an older address makes it the most recent record on both backends."""
    tracker = AddressTracker(any_backend, clock=clock)
    for address in ("A", "B", "A"):
        tracker.record_sighting("u1", "Alice", address)

    profile = any_backend.load("u1")

    assert [record.address for record in profile.history] == ["A", "B"]
    assert any_backend.is_recorded("u1", "A") is True
    assert any_backend.is_recorded("u1", "B") is False


def test_refreshed_record_survives_eviction(any_backend: StorageBackend, clock: Callable[[], datetime]) -> None:
    """Eviction removes the least recently seen address, not the first inserted one."""
    tracker = AddressTracker(any_backend, clock=clock)
    for address in ("A", "B", "C", "A", "D"):
        tracker.record_sighting("u1", "Alice", address)

    addresses = [record.address for record in any_backend.load("u1").history]

    assert addresses == ["D", "A", "C"]


def test_profiles_survive_reopen(any_backend: StorageBackend, clock: Callable[[], datetime]) -> None:
    """A shut down and reinitialised backend returns the same profile."""
    tracker = AddressTracker(any_backend, clock=clock)
    tracker.record_sighting("u1", "Alice", "1.2.3.4")
    before = any_backend.load("u1")

    any_backend.shutdown()
    any_backend.initialize()

    assert any_backend.load("u1") == before


def test_equal_last_seen_keeps_saved_order(any_backend: StorageBackend) -> None:
    """Records seen at the same instant load in the order they were saved on both backends."""
    profile = UserProfile(
        user_id="u1",
        display_name="Alice",
        current_address="A",
        last_seen=T0,
        history=[AddressRecord("A", T0, T0), AddressRecord("B", T0, T0)],
    )

    any_backend.save(profile)

    assert [record.address for record in any_backend.load("u1").history] == ["A", "B"]
    assert any_backend.last_record("u1").address == "A"
    assert any_backend.is_recorded("u1", "A") is True
    assert any_backend.is_recorded("u1", "B") is False
