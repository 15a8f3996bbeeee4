"""Shared pytest fixtures for iplog tests."""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Generator
from unittest.mock import Mock

import pytest

from iplog.enrichment.lookup import LookupResult
from iplog.settings import DatabaseSettings
from iplog.storage.file_backend import FileBackend
from iplog.storage.relational import RelationalBackend

BASE_TIME = datetime(2024, 9, 28, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def clean_iplog_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep IPLOG_* variables from the developer's shell out of the tests."""
    for key in list(os.environ):
        if key.startswith("IPLOG_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def clock() -> Callable[[], datetime]:
    """Deterministic clock advancing one minute per call."""
    state = {"now": BASE_TIME}

    def tick() -> datetime:
        current = state["now"]
        state["now"] = current + timedelta(minutes=1)
        return current

    return tick


@pytest.fixture
def mock_lookup() -> Mock:
    """Lookup collaborator that always succeeds."""
    lookup = Mock()
    lookup.lookup.side_effect = lambda address: LookupResult(
        location=f"Location of {address}",
        isp="Example ISP",
        source="test",
    )
    return lookup


@pytest.fixture
def file_backend(tmp_path: Path) -> Generator[FileBackend, None, None]:
    """Initialised file backend in a temporary directory."""
    backend = FileBackend(tmp_path / "data" / "iplog.json")
    backend.initialize()
    yield backend
    backend.shutdown()


@pytest.fixture
def sqlite_settings(tmp_path: Path) -> DatabaseSettings:
    """Relational settings pointing at a SQLite file."""
    return DatabaseSettings(url=f"sqlite:///{tmp_path / 'iplog.sqlite'}", pool_size=2, pool_timeout=0.5)


@pytest.fixture
def relational_backend(sqlite_settings: DatabaseSettings) -> Generator[RelationalBackend, None, None]:
    """Initialised relational backend on a SQLite file."""
    backend = RelationalBackend(sqlite_settings)
    backend.initialize()
    yield backend
    backend.shutdown()


@pytest.fixture(params=["file", "relational"])
def any_backend(request: pytest.FixtureRequest, tmp_path: Path) -> Generator[FileBackend | RelationalBackend, None, None]:
    """Each storage backend in turn, initialised with a history cap of 3."""
    backend: FileBackend | RelationalBackend
    if request.param == "file":
        backend = FileBackend(tmp_path / "iplog.json", max_history_size=3)
    else:
        settings = DatabaseSettings(url=f"sqlite:///{tmp_path / 'parity.sqlite'}", pool_size=2, pool_timeout=0.5)
        backend = RelationalBackend(settings, max_history_size=3)
    backend.initialize()
    yield backend
    backend.shutdown()
