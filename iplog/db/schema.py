"""SQLAlchemy Core schema for the relational storage backend.

Tables are built per table prefix so several deployments can share one
database.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects import mysql

NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

DEFAULT_TABLE_PREFIX = "iplog_"

# Naive UTC everywhere; MySQL needs fsp=6 to keep microseconds for ordering
Timestamp = DateTime(timezone=False).with_variant(mysql.DATETIME(fsp=6), "mysql")


@dataclass(frozen=True, slots=True)
class IPLogSchema:
    """Bound set of tables for one table prefix."""

    metadata: MetaData
    users: Table
    history: Table


def build_schema(prefix: str = DEFAULT_TABLE_PREFIX) -> IPLogSchema:
    """Return fresh metadata holding the users and address history tables for ``prefix``."""
    metadata = MetaData(naming_convention=NAMING_CONVENTION)

    users = Table(
        f"{prefix}users",
        metadata,
        Column("id", String(64), primary_key=True),
        Column("display_name", String(255), nullable=False, default=""),
        Column("current_address", String(64), nullable=True),
        Column("current_location", String(255), nullable=True),
        Column("current_isp", String(255), nullable=True),
        Column("last_seen", Timestamp, nullable=True),
        Column("created_at", Timestamp, nullable=False, server_default=func.now()),
        Column("updated_at", Timestamp, nullable=False, server_default=func.now()),
        Index(f"ix_{prefix}users_display_name", "display_name"),
    )

    history = Table(
        f"{prefix}address_history",
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column(
            "user_id",
            String(64),
            ForeignKey(f"{prefix}users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        Column("address", String(64), nullable=False),
        Column("location", String(255), nullable=True),
        Column("isp", String(255), nullable=True),
        Column("first_seen", Timestamp, nullable=False),
        Column("last_seen", Timestamp, nullable=False),
        UniqueConstraint("user_id", "address"),
        Index(f"ix_{prefix}address_history_user_id", "user_id"),
        Index(f"ix_{prefix}address_history_address", "address"),
        Index(f"ix_{prefix}address_history_last_seen", "last_seen"),
    )

    return IPLogSchema(metadata=metadata, users=users, history=history)


__all__ = ["DEFAULT_TABLE_PREFIX", "IPLogSchema", "NAMING_CONVENTION", "build_schema"]
