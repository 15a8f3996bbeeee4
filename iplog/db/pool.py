"""Bounded connection pool owned by the relational storage backend."""

from __future__ import annotations

import logging
import queue
import threading
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class PoolClosed(RuntimeError):
    """Raised when a connection is requested from a closed pool."""


class ConnectionPool:
    """Fixed-size pool of SQLAlchemy connections with scoped acquire/release.

    Connections are established up front by :meth:`open`. When every pooled
    connection is in use, :meth:`acquire` waits ``timeout`` seconds and then
    falls back to an ad hoc connection, which is kept on release only if the
    pool has room.
    """

    def __init__(self, engine: Engine, size: int = 5, timeout: float = 5.0) -> None:
        """Create an empty pool; no connection is made until open().

        Args:
            engine: Engine used to open connections
            size: Number of connections kept idle at most
            timeout: Seconds acquire() waits before opening an ad hoc connection
        """
        if size < 1:
            raise ValueError(f"pool size must be at least 1, got {size}")
        self.engine = engine
        self.size = size
        self.timeout = timeout
        self._idle: queue.Queue[Connection] = queue.Queue(maxsize=size)
        self._lock = threading.Lock()
        self._closed = False
        self._stats = {
            "opened": 0,
            "acquired": 0,
            "released": 0,
            "ad_hoc": 0,
            "replaced": 0,
            "discarded": 0,
        }

    @property
    def closed(self) -> bool:
        """True once close() has been called."""
        return self._closed

    def open(self) -> int:
        """Establish up to ``size`` connections.

        Returns:
            Number of connections established; failures are logged and skipped
        """
        established = 0
        for _ in range(self.size):
            try:
                conn = self._new_connection()
            except SQLAlchemyError as exc:
                logger.warning(f"Failed to open pooled connection: {exc}")
                continue
            try:
                self._idle.put_nowait(conn)
            except queue.Full:
                conn.close()
                break
            established += 1
        logger.info(f"Connection pool opened with {established}/{self.size} connections")
        return established

    def acquire(self) -> Connection:
        """Take a live connection from the pool.

        Raises:
            PoolClosed: If the pool has been closed
            SQLAlchemyError: If a replacement or ad hoc connection cannot be opened
        """
        if self._closed:
            raise PoolClosed("connection pool is closed")

        try:
            conn = self._idle.get(timeout=self.timeout)
        except queue.Empty:
            logger.warning(f"No pooled connection available after {self.timeout}s, opening an ad hoc connection")
            self._bump("ad_hoc")
            conn = self._new_connection()
        else:
            if not self._is_alive(conn):
                logger.warning("Discarding dead pooled connection and opening a replacement")
                self._discard(conn)
                self._bump("replaced")
                conn = self._new_connection()

        self._bump("acquired")
        return conn

    def release(self, conn: Connection) -> None:
        """Return ``conn`` to the pool, rolling back any open transaction.

        Closed or invalidated connections, connections that cannot be rolled
        back, and surplus connections are closed instead of pooled.
        """
        self._bump("released")
        if conn.closed:
            return
        if self._closed or conn.invalidated:
            self._discard(conn)
            return
        try:
            if conn.in_transaction():
                conn.rollback()
        except SQLAlchemyError as exc:
            logger.warning(f"Rollback on release failed, discarding connection: {exc}")
            self._discard(conn)
            return
        # Checked under the lock so close() cannot drain between the check and the put
        with self._lock:
            if not self._closed:
                try:
                    self._idle.put_nowait(conn)
                    return
                except queue.Full:
                    pass
        self._discard(conn)

    @contextmanager
    def connection(self) -> Iterator[Connection]:
        """Scoped acquire/release; the connection is released on every exit path."""
        conn = self.acquire()
        try:
            yield conn
        finally:
            self.release(conn)

    def close(self) -> None:
        """Close every idle connection; connections still in use close on release."""
        with self._lock:
            if self._closed:
                return
            self._closed = True

        closed = 0
        while True:
            try:
                conn = self._idle.get_nowait()
            except queue.Empty:
                break
            self._discard(conn)
            closed += 1
        logger.info(f"Connection pool closed ({closed} idle connections released)")

    def stats(self) -> dict[str, int]:
        """Return a snapshot of pool counters."""
        with self._lock:
            snapshot = dict(self._stats)
        snapshot["size"] = self.size
        snapshot["idle"] = self._idle.qsize()
        return snapshot

    def _new_connection(self) -> Connection:
        conn = self.engine.connect()
        self._bump("opened")
        return conn

    def _is_alive(self, conn: Connection) -> bool:
        if conn.closed or conn.invalidated:
            return False
        try:
            conn.execute(text("SELECT 1"))
            conn.rollback()
        except SQLAlchemyError as exc:
            logger.debug(f"Liveness check failed: {exc}")
            return False
        return True

    def _discard(self, conn: Connection) -> None:
        self._bump("discarded")
        try:
            conn.close()
        except SQLAlchemyError as exc:
            logger.debug(f"Error while closing connection: {exc}")

    def _bump(self, key: str) -> None:
        with self._lock:
            self._stats[key] += 1


__all__ = ["ConnectionPool", "PoolClosed"]
