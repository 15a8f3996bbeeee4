"""Unit tests for timestamp helpers."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from iplog.utils.timestamps import ensure_utc, format_timestamp, parse_timestamp, to_display, to_naive_utc, utcnow


def test_utcnow_is_aware_utc() -> None:
    """The clock always returns aware UTC values."""
    assert utcnow().tzinfo == timezone.utc


def test_ensure_utc_attaches_zone_to_naive_values() -> None:
    """Naive values are taken to be UTC already."""
    naive = datetime(2024, 1, 1, 8, 30)

    assert ensure_utc(naive) == datetime(2024, 1, 1, 8, 30, tzinfo=timezone.utc)


def test_ensure_utc_converts_other_zones() -> None:
    """Aware values in another zone are converted."""
    shanghai = timezone(timedelta(hours=8))

    assert ensure_utc(datetime(2024, 1, 1, 16, 30, tzinfo=shanghai)) == datetime(
        2024, 1, 1, 8, 30, tzinfo=timezone.utc
    )


def test_to_naive_utc_strips_zone_after_conversion() -> None:
    """Values bound to DATETIME columns are naive UTC."""
    shanghai = timezone(timedelta(hours=8))

    assert to_naive_utc(datetime(2024, 1, 1, 16, 30, tzinfo=shanghai)) == datetime(2024, 1, 1, 8, 30)


@pytest.mark.parametrize("value", [None, "", "   "])
def test_parse_timestamp_empty_values(value) -> None:
    """Missing values parse to None."""
    assert parse_timestamp(value) is None


def test_parse_and_format_are_inverse() -> None:
    """Formatting then parsing returns the same instant."""
    moment = datetime(2024, 9, 28, 12, 0, 0, 123456, tzinfo=timezone.utc)

    assert parse_timestamp(format_timestamp(moment)) == moment


def test_format_timestamp_none() -> None:
    """None stays None."""
    assert format_timestamp(None) is None


def test_to_display_uses_configured_zone() -> None:
    """Display strings are rendered in the configured zone."""
    moment = datetime(2024, 9, 28, 12, 0, tzinfo=timezone.utc)

    assert to_display(moment, "Asia/Shanghai") == "2024-09-28 20:00:00"


def test_to_display_falls_back_to_utc() -> None:
    """Unknown zones render in UTC and None renders as unknown."""
    moment = datetime(2024, 9, 28, 12, 0, tzinfo=timezone.utc)

    assert to_display(moment, "Not/AZone") == "2024-09-28 12:00:00"
    assert to_display(None) == "unknown"


def test_parse_timestamp_accepts_z_suffix() -> None:
    """A trailing Z means UTC."""
    assert parse_timestamp("2024-09-28T12:00:00Z") == datetime(2024, 9, 28, 12, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize("value", ["yesterday", 1727524800])
def test_parse_timestamp_rejects_garbage(value) -> None:
    """Unparseable text and non-string values raise ValueError."""
    with pytest.raises(ValueError):
        parse_timestamp(value)
