"""Data entities for per-user address history."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

from ..utils.timestamps import format_timestamp, parse_timestamp


@dataclass(slots=True)
class AddressRecord:
    """One observed network address for a user.

    Attributes:
        address: The observed address; identity of the record within a history
        first_seen: When the address was first observed (aware UTC)
        last_seen: When the address was most recently observed (aware UTC)
        location: Human readable location from the lookup collaborator
        isp: Network operator from the lookup collaborator
    """

    address: str
    first_seen: datetime
    last_seen: datetime
    location: str | None = None
    isp: str | None = None

    def touch(self, now: datetime) -> None:
        """Mark the record as seen again at ``now``."""
        self.last_seen = now

    def to_dict(self) -> dict[str, Any]:
        """Return the persisted representation (unset enrichment is omitted)."""
        payload: dict[str, Any] = {
            "address": self.address,
            "firstSeen": format_timestamp(self.first_seen),
            "lastSeen": format_timestamp(self.last_seen),
        }
        if self.location is not None:
            payload["location"] = self.location
        if self.isp is not None:
            payload["isp"] = self.isp
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AddressRecord:
        """Build a record from its persisted representation.

        Raises:
            ValueError: If the address or timestamps are missing or malformed
        """
        address = data.get("address")
        if not isinstance(address, str) or not address:
            raise ValueError(f"history entry without address: {data!r}")
        first_seen = parse_timestamp(data.get("firstSeen"))
        last_seen = parse_timestamp(data.get("lastSeen"))
        if last_seen is None:
            last_seen = first_seen
        if first_seen is None:
            first_seen = last_seen
        if first_seen is None or last_seen is None:
            raise ValueError(f"history entry for {address} has no timestamps")
        return cls(
            address=address,
            first_seen=first_seen,
            last_seen=last_seen,
            location=data.get("location"),
            isp=data.get("isp"),
        )


@dataclass(slots=True)
class UserProfile:
    """Identity, current-state snapshot and ordered address history of a user.

    ``history`` is most-recent-first. ``current_*`` fields are a denormalised
    view of the record for ``current_address``.
    """

    user_id: str
    display_name: str
    current_address: str | None = None
    current_location: str | None = None
    current_isp: str | None = None
    last_seen: datetime | None = None
    history: list[AddressRecord] = field(default_factory=list)

    def find_record(self, address: str) -> AddressRecord | None:
        """Return the history record for ``address`` (exact match), if any."""
        for record in self.history:
            if record.address == address:
                return record
        return None

    @property
    def latest_record(self) -> AddressRecord | None:
        """Head of the history, or None for an empty history."""
        return self.history[0] if self.history else None

    def to_dict(self) -> dict[str, Any]:
        """Return the persisted representation keyed as in the data file."""
        return {
            "displayName": self.display_name,
            "currentAddress": self.current_address,
            "currentLocation": self.current_location,
            "currentISP": self.current_isp,
            "lastSeen": format_timestamp(self.last_seen),
            "history": [record.to_dict() for record in self.history],
        }

    @classmethod
    def from_dict(cls, user_id: str, data: Mapping[str, Any]) -> UserProfile:
        """Build a profile from the subtree stored under ``user_id``.

        Raises:
            ValueError: If the subtree is not a mapping or contains bad entries
        """
        if not isinstance(data, Mapping):
            raise ValueError(f"profile {user_id} is not a mapping")
        raw_history = data.get("history") or []
        if not isinstance(raw_history, list):
            raise ValueError(f"profile {user_id} has a non-list history")
        return cls(
            user_id=user_id,
            display_name=str(data.get("displayName") or ""),
            current_address=data.get("currentAddress"),
            current_location=data.get("currentLocation"),
            current_isp=data.get("currentISP"),
            last_seen=parse_timestamp(data.get("lastSeen")),
            history=[AddressRecord.from_dict(entry) for entry in raw_history],
        )


__all__ = ["AddressRecord", "UserProfile"]
