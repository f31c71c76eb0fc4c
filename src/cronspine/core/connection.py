"""Database connection protocol and the SQLite adapter.

Repositories depend on the ``Connection`` protocol only. The one shipped
implementation, ``SqliteConnection``, wraps a ``sqlite3.Connection`` that is
shared by the API threads, the timing thread, the job workers and the
retention thread, so every statement runs under one re-entrant lock and
multi-statement writes go through ``transaction()``.

Usage::

    from cronspine.core.connection import create_connection

    conn = create_connection(":memory:")
    with conn.transaction():
        conn.execute("INSERT INTO cs_jobs (...) VALUES (...)", params)
        conn.execute("INSERT INTO cs_triggers (...) VALUES (...)", params)

    rows = conn.query("SELECT * FROM cs_jobs WHERE job_group = ?", ("grp1",))
"""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Connection(Protocol):
    """Minimal synchronous connection interface used by the repositories."""

    def execute(self, sql: str, params: tuple | list = ()) -> Any: ...

    def query(self, sql: str, params: tuple | list = ()) -> list[Any]: ...

    def query_one(self, sql: str, params: tuple | list = ()) -> Any | None: ...

    def transaction(self) -> Any: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


class SqliteConnection:
    """Thread-safe adapter: ``sqlite3.Connection`` → ``Connection`` protocol.

    ``execute()`` outside a transaction commits immediately. Inside
    ``transaction()`` statements accumulate and are committed (or rolled
    back on exception) when the outermost block exits.
    """

    def __init__(self, path: str = ":memory:", *, row_factory: Any = sqlite3.Row) -> None:
        self.path = path
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = row_factory
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._lock = threading.RLock()
        self._depth = 0

    # -- Connection protocol -----------------------------------------------

    def execute(self, sql: str, params: tuple | list = ()) -> sqlite3.Cursor:
        with self._lock:
            cursor = self._conn.execute(sql, params)
            if self._depth == 0:
                self._conn.commit()
            return cursor

    def executescript(self, script: str) -> None:
        with self._lock:
            self._conn.executescript(script)

    def query(self, sql: str, params: tuple | list = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def query_one(self, sql: str, params: tuple | list = ()) -> sqlite3.Row | None:
        with self._lock:
            return self._conn.execute(sql, params).fetchone()

    @contextmanager
    def transaction(self) -> Iterator[SqliteConnection]:
        """Run a block of statements atomically."""
        with self._lock:
            self._depth += 1
            try:
                yield self
            except BaseException:
                self._depth -= 1
                if self._depth == 0:
                    self._conn.rollback()
                raise
            else:
                self._depth -= 1
                if self._depth == 0:
                    self._conn.commit()

    def commit(self) -> None:
        with self._lock:
            self._conn.commit()

    def rollback(self) -> None:
        with self._lock:
            self._conn.rollback()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # -- convenience -------------------------------------------------------

    @property
    def raw(self) -> sqlite3.Connection:
        """Access the underlying ``sqlite3.Connection`` (e.g. for pragmas)."""
        return self._conn

    def __repr__(self) -> str:
        return f"SqliteConnection({self.path!r})"


def create_connection(path: str = ":memory:", *, init_schema: bool = True) -> SqliteConnection:
    """Open a SQLite connection and (by default) create the scheduler tables."""
    conn = SqliteConnection(path)
    if init_schema:
        from cronspine.core.schema import create_tables

        create_tables(conn)
    return conn
