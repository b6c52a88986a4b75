"""Catalog database layer: connection, table layout, read-only scopes."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

from catsync.errors import CatalogError

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

logger = logging.getLogger(__name__)

# Access type ids stored in r_objt_access.
ACCESS_READ = 1050
ACCESS_WRITE = 1120
ACCESS_OWN = 1200

_CATALOG_SCHEMA_SQL = """\
-- AVU metadata
CREATE TABLE IF NOT EXISTS r_meta_main (
    meta_id         INTEGER PRIMARY KEY,
    meta_attr_name  TEXT NOT NULL,
    meta_attr_value TEXT NOT NULL,
    meta_attr_unit  TEXT
);

-- Object ↔ metadata links
CREATE TABLE IF NOT EXISTS r_objt_metamap (
    object_id INTEGER NOT NULL,
    meta_id   INTEGER NOT NULL,
    PRIMARY KEY (object_id, meta_id)
);

-- Users
CREATE TABLE IF NOT EXISTS r_user_main (
    user_id   INTEGER PRIMARY KEY,
    user_name TEXT NOT NULL,
    zone_name TEXT NOT NULL
);

-- Access control
CREATE TABLE IF NOT EXISTS r_objt_access (
    object_id      INTEGER NOT NULL,
    user_id        INTEGER NOT NULL,
    access_type_id INTEGER NOT NULL,
    PRIMARY KEY (object_id, user_id)
);

-- Collections (folders)
CREATE TABLE IF NOT EXISTS r_coll_main (
    coll_id         INTEGER PRIMARY KEY,
    coll_name       TEXT NOT NULL UNIQUE,
    coll_owner_name TEXT NOT NULL,
    coll_owner_zone TEXT NOT NULL,
    create_ts       TEXT NOT NULL,
    modify_ts       TEXT NOT NULL
);

-- Data objects (files), one row per replica
CREATE TABLE IF NOT EXISTS r_data_main (
    data_id         INTEGER NOT NULL,
    coll_id         INTEGER NOT NULL,
    data_name       TEXT NOT NULL,
    data_repl_num   INTEGER NOT NULL DEFAULT 0,
    data_type_name  TEXT,
    data_size       INTEGER NOT NULL DEFAULT 0,
    data_owner_name TEXT NOT NULL,
    data_owner_zone TEXT NOT NULL,
    create_ts       TEXT NOT NULL,
    modify_ts       TEXT NOT NULL,
    PRIMARY KEY (data_id, data_repl_num)
);

CREATE INDEX IF NOT EXISTS idx_meta_attr ON r_meta_main(meta_attr_name, meta_attr_value);
CREATE INDEX IF NOT EXISTS idx_metamap_meta ON r_objt_metamap(meta_id);
CREATE INDEX IF NOT EXISTS idx_access_object ON r_objt_access(object_id);
CREATE INDEX IF NOT EXISTS idx_data_coll ON r_data_main(coll_id);
"""


def open_catalog(db_path: Path, *, writable: bool = False) -> sqlite3.Connection:
    """Open the catalog database.

    By default the database is opened read-only (``mode=ro``): ``TEMP``
    tables still work, but no statement can change the catalog itself.
    *writable* is for creating local catalogs and test fixtures.

    The connection runs in autocommit mode so that transactions are only
    ever opened explicitly by :func:`read_scope`.

    Returns a connection with ``sqlite3.Row`` row factory.
    """
    try:
        if writable:
            conn = sqlite3.connect(str(db_path), isolation_level=None)
        else:
            uri = f"{Path(db_path).resolve().as_uri()}?mode=ro"
            conn = sqlite3.connect(uri, uri=True, isolation_level=None)
    except sqlite3.Error as exc:
        msg = f"Failed to open catalog {db_path}: {exc}"
        raise CatalogError(msg) from exc
    conn.row_factory = sqlite3.Row
    return conn


def create_catalog_schema(conn: sqlite3.Connection) -> None:
    """Create the catalog tables if they don't exist.

    The reconciler never writes to the catalog; this is for local catalogs
    and test fixtures.
    """
    conn.executescript(_CATALOG_SCHEMA_SQL)


class ReadScope:
    """A read transaction on the catalog.

    On a connection from :func:`open_catalog` only reads and ``TEMP`` tables
    are possible through a scope, and every scope ends in a rollback.  There
    is no commit.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn: sqlite3.Connection | None = conn

    @property
    def active(self) -> bool:
        return self._conn is not None

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            msg = "Catalog read scope has already been released"
            raise CatalogError(msg)
        return self._conn

    def create_temp_table(self, name: str, select_sql: str, params: Sequence[Any] = ()) -> int:
        """Materialize *select_sql* as ``TEMP`` table *name*; return its row count."""
        conn = self._connection()
        try:
            conn.execute(f"CREATE TEMP TABLE {name} AS {select_sql}", params)
            row = conn.execute(f"SELECT count(*) FROM temp.{name}").fetchone()
        except sqlite3.Error as exc:
            msg = f"Failed to build relation {name}: {exc}"
            raise CatalogError(msg) from exc
        return int(row[0])

    def query(
        self, sql: str, params: Sequence[Any] = (), *, what: str = "catalog"
    ) -> sqlite3.Cursor:
        """Run a read query and return its cursor.

        *what* names the query in the error message.
        """
        conn = self._connection()
        try:
            return conn.execute(sql, params)
        except sqlite3.Error as exc:
            msg = f"Query for {what} failed: {exc}"
            raise CatalogError(msg) from exc

    def release(self) -> None:
        """Roll back and detach.  Safe to call more than once."""
        conn, self._conn = self._conn, None
        if conn is None:
            return
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error:
            logger.warning("Rollback of catalog read scope failed", exc_info=True)


@contextmanager
def read_scope(conn: sqlite3.Connection) -> Iterator[ReadScope]:
    """Open a read transaction and release it on every exit path."""
    try:
        conn.execute("BEGIN")
    except sqlite3.Error as exc:
        msg = f"Failed to begin catalog read scope: {exc}"
        raise CatalogError(msg) from exc
    scope = ReadScope(conn)
    try:
        yield scope
    finally:
        scope.release()
