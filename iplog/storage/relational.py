"""Relational storage backend (PostgreSQL, MySQL or SQLite via SQLAlchemy Core)."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Any, Iterator, Mapping, Sequence

from sqlalchemy import Table, and_, case, delete, func, select
from sqlalchemy.dialects.mysql import insert as mysql_insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from ..db.engine import create_engine_from_settings
from ..db.pool import ConnectionPool, PoolClosed
from ..db.schema import build_schema
from ..exceptions import StorageUnavailable, TransientIOError
from ..history.models import AddressRecord, UserProfile
from ..history.policy import DEFAULT_MAX_HISTORY_SIZE, enforce_cap
from ..settings import DatabaseSettings
from ..utils.timestamps import ensure_utc, to_naive_utc, utcnow
from .base import StorageBackend

logger = logging.getLogger(__name__)

_USER_UPDATE_COLUMNS = (
    "display_name",
    "current_address",
    "current_location",
    "current_isp",
    "last_seen",
    "updated_at",
)
_HISTORY_UPDATE_COLUMNS = ("location", "isp", "first_seen", "last_seen")


class RelationalBackend(StorageBackend):
    """Two-table storage backend with a bounded connection pool.

    Each save runs in one transaction: upsert the user row, upsert every
    history row keyed by ``(user_id, address)``, then delete the rows ranked
    beyond ``max_history_size`` by ``last_seen DESC, id DESC``.
    """

    name = "relational"

    def __init__(
        self,
        settings: DatabaseSettings,
        max_history_size: int = DEFAULT_MAX_HISTORY_SIZE,
        *,
        engine: Engine | None = None,
    ) -> None:
        """Build the engine and table definitions; no connection is made yet.

        Args:
            settings: Connection and pool configuration
            max_history_size: Upper bound applied to every saved history
            engine: Pre-built engine, used instead of one derived from ``settings``

        Raises:
            ConfigurationError: If the settings cannot produce an engine
        """
        super().__init__(max_history_size)
        self.settings = settings
        self.schema = build_schema(settings.table_prefix)
        self.engine = engine if engine is not None else create_engine_from_settings(settings)
        self._pool: ConnectionPool | None = None
        self._lock = threading.Lock()

    @property
    def initialized(self) -> bool:
        """True while the pool is open."""
        pool = self._pool
        return pool is not None and not pool.closed

    def initialize(self) -> None:
        """Open the connection pool and create the tables if needed."""
        with self._lock:
            if self._pool is not None:
                return

            pool = ConnectionPool(self.engine, size=self.settings.pool_size, timeout=self.settings.pool_timeout)
            try:
                if pool.open() == 0:
                    raise StorageUnavailable("could not open any database connection")
                with pool.connection() as conn, conn.begin():
                    self.schema.metadata.create_all(conn)
            except StorageUnavailable:
                pool.close()
                logger.error("Relational storage unavailable: no database connection could be opened")
                raise
            except SQLAlchemyError as exc:
                pool.close()
                logger.error(f"Failed to prepare relational storage: {exc}", exc_info=True)
                raise StorageUnavailable(f"database schema could not be created: {exc}") from exc

            self._pool = pool
            logger.info(
                f"Relational storage initialized ({self.engine.dialect.name}, "
                f"prefix {self.settings.table_prefix!r}, pool size {self.settings.pool_size})"
            )

    def shutdown(self) -> None:
        """Close the pool and dispose of the engine."""
        with self._lock:
            pool, self._pool = self._pool, None
        if pool is None:
            return
        pool.close()
        self.engine.dispose()
        logger.info("Relational storage shut down")

    def pool_stats(self) -> dict[str, int]:
        """Return connection pool counters (empty when not initialised)."""
        pool = self._pool
        return pool.stats() if pool is not None else {}

    def save(self, profile: UserProfile) -> None:
        """Upsert the profile and its history in a single transaction."""
        self._require_initialized()
        records = enforce_cap(profile.history, self.max_history_size)
        try:
            with self._connection() as conn, conn.begin():
                self._upsert_user(conn, profile)
                # Tail first so a fresh head gets the highest id, which breaks last_seen ties
                for record in reversed(records):
                    self._upsert_record(conn, profile.user_id, record)
                self._enforce_cap(conn, profile.user_id)
        except SQLAlchemyError as exc:
            logger.error(f"Failed to save profile {profile.user_id}, transaction rolled back: {exc}", exc_info=True)
            raise TransientIOError(f"could not save profile {profile.user_id}") from exc
        logger.debug(f"Saved profile {profile.user_id} with {len(records)} history records")

    def load(self, user_id: str) -> UserProfile | None:
        """Return the stored profile for ``user_id`` or None."""
        self._require_initialized()
        users = self.schema.users
        try:
            with self._connection() as conn, conn.begin():
                row = conn.execute(select(users).where(users.c.id == user_id)).mappings().first()
                if row is None:
                    return None
                return self._to_profile(conn, row)
        except SQLAlchemyError as exc:
            logger.error(f"Failed to load profile {user_id}: {exc}", exc_info=True)
            raise TransientIOError(f"could not load profile {user_id}") from exc

    def find_by_name(self, name: str) -> UserProfile | None:
        """Case-insensitive display-name lookup; most recently seen, then lowest id, wins."""
        self._require_initialized()
        users = self.schema.users
        stmt = (
            select(users)
            .where(func.lower(users.c.display_name) == name.lower())
            .order_by(
                # NULL last_seen sorts last on every dialect
                case((users.c.last_seen.is_(None), 1), else_=0),
                users.c.last_seen.desc(),
                users.c.id.asc(),
            )
            .limit(1)
        )
        try:
            with self._connection() as conn, conn.begin():
                row = conn.execute(stmt).mappings().first()
                if row is None:
                    return None
                return self._to_profile(conn, row)
        except SQLAlchemyError as exc:
            logger.error(f"Failed to look up profile by name {name!r}: {exc}", exc_info=True)
            raise TransientIOError(f"could not look up profile {name!r}") from exc

    def last_record(self, user_id: str) -> AddressRecord | None:
        """Return the most recent history row for ``user_id``."""
        self._require_initialized()
        try:
            with self._connection() as conn, conn.begin():
                rows = self._history_rows(conn, user_id, limit=1)
        except SQLAlchemyError as exc:
            logger.error(f"Failed to read last record of {user_id}: {exc}", exc_info=True)
            raise TransientIOError(f"could not read last record of {user_id}") from exc
        return self._to_record(rows[0]) if rows else None

    @contextmanager
    def _connection(self) -> Iterator[Connection]:
        pool = self._pool
        if pool is None:
            raise StorageUnavailable("relational storage backend is not initialized")
        try:
            conn = pool.acquire()
        except PoolClosed as exc:
            raise StorageUnavailable("relational storage backend is shut down") from exc
        try:
            yield conn
        finally:
            pool.release(conn)

    def _upsert_user(self, conn: Connection, profile: UserProfile) -> None:
        now = to_naive_utc(utcnow())
        values = {
            "id": profile.user_id,
            "display_name": profile.display_name,
            "current_address": profile.current_address,
            "current_location": profile.current_location,
            "current_isp": profile.current_isp,
            "last_seen": to_naive_utc(profile.last_seen) if profile.last_seen else None,
            "created_at": now,
            "updated_at": now,
        }
        self._upsert(conn, self.schema.users, values, ("id",), _USER_UPDATE_COLUMNS)

    def _upsert_record(self, conn: Connection, user_id: str, record: AddressRecord) -> None:
        values = {
            "user_id": user_id,
            "address": record.address,
            "location": record.location,
            "isp": record.isp,
            "first_seen": to_naive_utc(record.first_seen),
            "last_seen": to_naive_utc(record.last_seen),
        }
        self._upsert(conn, self.schema.history, values, ("user_id", "address"), _HISTORY_UPDATE_COLUMNS)

    def _upsert(
        self,
        conn: Connection,
        table: Table,
        values: Mapping[str, Any],
        key_columns: Sequence[str],
        update_columns: Sequence[str],
    ) -> None:
        dialect_name = conn.dialect.name

        if dialect_name in ("postgresql", "sqlite"):
            insert = pg_insert if dialect_name == "postgresql" else sqlite_insert
            stmt = insert(table).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[table.c[key] for key in key_columns],
                set_={column: stmt.excluded[column] for column in update_columns},
            )
            conn.execute(stmt)
            return

        if dialect_name == "mysql":
            mysql_stmt = mysql_insert(table).values(**values)
            mysql_stmt = mysql_stmt.on_duplicate_key_update(
                {column: mysql_stmt.inserted[column] for column in update_columns}
            )
            conn.execute(mysql_stmt)
            return

        # Other dialects: lock the row, then update or insert
        key_clause = and_(*[table.c[key] == values[key] for key in key_columns])
        existing = conn.execute(select(table.c[key_columns[0]]).where(key_clause).with_for_update()).first()
        if existing is None:
            conn.execute(table.insert().values(**values))
        else:
            conn.execute(table.update().where(key_clause).values({column: values[column] for column in update_columns}))

    def _enforce_cap(self, conn: Connection, user_id: str) -> None:
        history = self.schema.history
        # Derived table so MySQL accepts LIMIT and a self-referencing delete
        keep = (
            select(history.c.id)
            .where(history.c.user_id == user_id)
            .order_by(history.c.last_seen.desc(), history.c.id.desc())
            .limit(self.max_history_size)
            .subquery("keep")
        )
        result = conn.execute(
            delete(history).where(
                history.c.user_id == user_id,
                history.c.id.not_in(select(keep.c.id)),
            )
        )
        if result.rowcount:
            logger.debug(f"Evicted {result.rowcount} history records of {user_id}")

    def _history_rows(self, conn: Connection, user_id: str, limit: int | None = None) -> list[Mapping[str, Any]]:
        history = self.schema.history
        stmt = (
            select(history)
            .where(history.c.user_id == user_id)
            .order_by(history.c.last_seen.desc(), history.c.id.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(conn.execute(stmt).mappings())

    def _to_profile(self, conn: Connection, row: Mapping[str, Any]) -> UserProfile:
        return UserProfile(
            user_id=row["id"],
            display_name=row["display_name"] or "",
            current_address=row["current_address"],
            current_location=row["current_location"],
            current_isp=row["current_isp"],
            last_seen=ensure_utc(row["last_seen"]) if row["last_seen"] is not None else None,
            history=[self._to_record(item) for item in self._history_rows(conn, row["id"])],
        )

    @staticmethod
    def _to_record(row: Mapping[str, Any]) -> AddressRecord:
        return AddressRecord(
            address=row["address"],
            first_seen=ensure_utc(row["first_seen"]),
            last_seen=ensure_utc(row["last_seen"]),
            location=row["location"],
            isp=row["isp"],
        )


__all__ = ["RelationalBackend"]
