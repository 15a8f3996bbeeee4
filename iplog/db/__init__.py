"""Database utilities for the relational storage backend."""

from .engine import build_url, create_engine_from_settings, detect_driver_support
from .pool import ConnectionPool, PoolClosed
from .schema import NAMING_CONVENTION, IPLogSchema, build_schema

__all__ = [
    "NAMING_CONVENTION",
    "ConnectionPool",
    "IPLogSchema",
    "PoolClosed",
    "build_schema",
    "build_url",
    "create_engine_from_settings",
    "detect_driver_support",
]
