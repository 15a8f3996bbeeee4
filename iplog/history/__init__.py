"""Address history entities and the policy applied on every sighting."""

from __future__ import annotations

from .models import AddressRecord, UserProfile
from .policy import (
    DEFAULT_MAX_HISTORY_SIZE,
    SightingOutcome,
    apply_sighting,
    enforce_cap,
    new_profile,
    order_history,
)

__all__ = [
    "AddressRecord",
    "UserProfile",
    "DEFAULT_MAX_HISTORY_SIZE",
    "SightingOutcome",
    "apply_sighting",
    "enforce_cap",
    "new_profile",
    "order_history",
]
