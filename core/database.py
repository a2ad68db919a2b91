"""
core/database.py -- The store boundary: engine ownership, deadlines, error translation.

Uses SQLAlchemy Core (not ORM) so the domain dataclasses remain the
authoritative domain representation. Swapping SQLite for PostgreSQL is a
connection string change, not a rewrite.

Every store (auth/store.py, auth/permissions.py, catalog/store.py) shares one
Database instance and registers its tables on the module-level ``metadata``.
Stores never call engine.connect() directly: Database.connect() wraps each
operation so that

  - a statement or pool wait exceeding the deadline raises StoreTimeoutError
  - any other driver failure raises InternalError (logged here, message generic)
  - domain errors raised inside the block pass through untouched

IntegrityError is deliberately left to the caller, which knows whether a
unique violation means "duplicate email" or a genuine fault. Callers must
catch it inside the ``with`` block.

Deadlines:
  SQLite      -- busy timeout (connect arg) bounds lock waits only. A long
                 running statement that holds no contended lock is not
                 interrupted; the deadline applies once it has to wait.
  PostgreSQL  -- SET statement_timeout on every new connection.
  All         -- pool_timeout bounds the wait for a free pooled connection.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import MetaData, create_engine, event, text
from sqlalchemy import exc as sa_exc
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.pool import QueuePool

from core.errors import InternalError, StoreTimeoutError

logger = logging.getLogger("marquee.store")

metadata = MetaData()

# Driver messages that mean "the deadline expired" rather than "the query is wrong".
_TIMEOUT_MARKERS = ("database is locked", "statement timeout", "canceling statement", "timeout expired")


# ---------------------------------------------------------------------------
# Per-connection setup
# ---------------------------------------------------------------------------


def _sqlite_on_connect(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


def _statement_timeout_listener(timeout_ms: int):
    def _on_connect(dbapi_conn, connection_record) -> None:
        cursor = dbapi_conn.cursor()
        cursor.execute(f"SET statement_timeout = {int(timeout_ms)}")
        cursor.execute("SET timezone = 'UTC'")
        cursor.close()

    return _on_connect


def _is_timeout(exc: sa_exc.DBAPIError) -> bool:
    message = str(exc.orig).lower() if exc.orig is not None else str(exc).lower()
    return any(marker in message for marker in _TIMEOUT_MARKERS)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


class Database:
    """Owns the engine shared by every store.

    Usage:
        db = Database("sqlite:///:memory:")
        users = UserStore(db)
        db.close()
    """

    def __init__(
        self,
        db_url: str,
        timeout: float = 3.0,
        pool_size: int = 25,
        max_overflow: int = 10,
        pool_recycle: int = 900,
    ) -> None:
        self.timeout = timeout
        if db_url.startswith("sqlite"):
            # check_same_thread=False: FastAPI runs sync handlers on a thread
            # pool, so one pooled connection may be used from several threads.
            self.engine: Engine = create_engine(
                db_url,
                connect_args={"check_same_thread": False, "timeout": timeout},
            )
            event.listen(self.engine, "connect", _sqlite_on_connect)
        else:
            self.engine = create_engine(
                db_url,
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_recycle=pool_recycle,
                pool_pre_ping=True,
                pool_timeout=timeout,
            )
            if self.engine.dialect.name == "postgresql":
                event.listen(self.engine, "connect", _statement_timeout_listener(timeout * 1000))

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def create_all(self) -> None:
        """Create every table registered on ``metadata``. Idempotent."""
        with self.connect() as conn:
            metadata.create_all(conn)
            conn.commit()

    @contextmanager
    def connect(self) -> Iterator[Connection]:
        """Yield a connection; translate driver failures into domain error kinds."""
        try:
            with self.engine.connect() as conn:
                yield conn
        except sa_exc.IntegrityError:
            raise
        except sa_exc.TimeoutError as exc:
            logger.warning("Timed out waiting for a pooled connection (%.1fs)", self.timeout)
            raise StoreTimeoutError() from exc
        except sa_exc.OperationalError as exc:
            if _is_timeout(exc):
                logger.warning("Store operation exceeded its deadline: %s", exc.orig)
                raise StoreTimeoutError() from exc
            logger.exception("Store operation failed")
            raise InternalError() from exc
        except sa_exc.SQLAlchemyError as exc:
            logger.exception("Store operation failed")
            raise InternalError() from exc

    def ping(self) -> bool:
        """Return True if the database answers a trivial query within the deadline."""
        try:
            with self.connect() as conn:
                conn.execute(text("SELECT 1"))
        except (StoreTimeoutError, InternalError):
            return False
        return True

    def pool_stats(self) -> dict:
        """Connection pool counters for the debug endpoint.

        SQLite in-memory pools only report their status line.
        """
        pool = self.engine.pool
        stats: dict = {"status": pool.status()}
        if isinstance(pool, QueuePool):
            stats.update(
                size=pool.size(),
                checked_in=pool.checkedin(),
                checked_out=pool.checkedout(),
                overflow=pool.overflow(),
            )
        return stats

    def close(self) -> None:
        self.engine.dispose()
