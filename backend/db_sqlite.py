"""
SQLite persistence for the investigation graph.

Connections run in autocommit mode; anything that has to be all-or-nothing goes
through `transaction()`, which opens an IMMEDIATE transaction, enforces an
optional deadline and maps sqlite failures onto the domain error taxonomy.
"""
import logging
import sqlite3
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence

from config import CASEMAP_DB_PATH, SQLITE_BUSY_TIMEOUT_SECONDS
from errors import (
    CaseMapError,
    PersistenceError,
    ReferentialIntegrityError,
    TransactionInterrupted,
)

logger = logging.getLogger("casemap")

# Number of SQLite VM instructions between deadline checks
_PROGRESS_HANDLER_STEPS = 1000

SCHEMA = """
CREATE TABLE IF NOT EXISTS roles (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL UNIQUE,
    category TEXT NOT NULL,
    is_system INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS relationship_types (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL UNIQUE,
    category TEXT NOT NULL,
    is_system INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS event_types (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL UNIQUE,
    icon TEXT,
    color TEXT,
    is_system INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS tags (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL UNIQUE,
    color TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS entities (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    role_id TEXT NOT NULL REFERENCES roles(id),
    entity_type TEXT NOT NULL DEFAULT 'human',
    description TEXT,
    avatar TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS graphs (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    root_label_top TEXT,
    root_label_bottom TEXT,
    root_label_left TEXT,
    root_label_right TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS nodes (
    id TEXT PRIMARY KEY,
    graph_id TEXT NOT NULL REFERENCES graphs(id) ON DELETE CASCADE,
    entity_id TEXT NOT NULL REFERENCES entities(id),
    x REAL NOT NULL DEFAULT 0,
    y REAL NOT NULL DEFAULT 0,
    kind TEXT NOT NULL DEFAULT 'custom',
    category TEXT
);
CREATE INDEX IF NOT EXISTS idx_nodes_graph ON nodes(graph_id);
CREATE INDEX IF NOT EXISTS idx_nodes_entity ON nodes(graph_id, entity_id);

CREATE TABLE IF NOT EXISTS edges (
    id TEXT PRIMARY KEY,
    graph_id TEXT NOT NULL REFERENCES graphs(id) ON DELETE CASCADE,
    source_id TEXT NOT NULL REFERENCES nodes(id) ON DELETE CASCADE,
    target_id TEXT NOT NULL REFERENCES nodes(id) ON DELETE CASCADE,
    label TEXT,
    relationship_type_id TEXT REFERENCES relationship_types(id),
    source_handle TEXT,
    target_handle TEXT,
    created_from_event_id TEXT REFERENCES events(id) ON DELETE SET NULL
);
CREATE INDEX IF NOT EXISTS idx_edges_graph ON edges(graph_id);
CREATE INDEX IF NOT EXISTS idx_edges_pair ON edges(graph_id, source_id, target_id);

CREATE TABLE IF NOT EXISTS events (
    id TEXT PRIMARY KEY,
    graph_id TEXT NOT NULL REFERENCES graphs(id) ON DELETE CASCADE,
    title TEXT NOT NULL,
    description TEXT,
    date TEXT,
    series_day INTEGER,
    source_graph_id TEXT REFERENCES graphs(id) ON DELETE SET NULL,
    sort_order INTEGER NOT NULL DEFAULT 0,
    event_type_id TEXT NOT NULL REFERENCES event_types(id),
    source_node_id TEXT REFERENCES nodes(id) ON DELETE SET NULL,
    target_node_id TEXT REFERENCES nodes(id) ON DELETE SET NULL,
    created_edge_id TEXT REFERENCES edges(id) ON DELETE SET NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_events_graph_date ON events(graph_id, date);

CREATE TABLE IF NOT EXISTS event_participants (
    event_id TEXT NOT NULL REFERENCES events(id) ON DELETE CASCADE,
    node_id TEXT NOT NULL REFERENCES nodes(id) ON DELETE CASCADE,
    PRIMARY KEY (event_id, node_id)
);

CREATE TABLE IF NOT EXISTS event_tags (
    event_id TEXT NOT NULL REFERENCES events(id) ON DELETE CASCADE,
    tag_id TEXT NOT NULL REFERENCES tags(id) ON DELETE CASCADE,
    PRIMARY KEY (event_id, tag_id)
);
"""


def connect(db_path: Optional[str] = None) -> sqlite3.Connection:
    """Open a connection with foreign keys enforced and dict-like rows."""
    conn = sqlite3.connect(
        db_path or CASEMAP_DB_PATH,
        timeout=SQLITE_BUSY_TIMEOUT_SECONDS,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def init_db(conn: sqlite3.Connection) -> None:
    """Create tables and indexes if they do not exist."""
    conn.executescript(SCHEMA)


def get_db():
    """FastAPI dependency: one connection per request."""
    conn = connect()
    try:
        yield conn
    finally:
        conn.close()


def fetch_one(conn: sqlite3.Connection, query: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
    row = conn.execute(query, tuple(params)).fetchone()
    return dict(row) if row is not None else None


def fetch_all(conn: sqlite3.Connection, query: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
    return [dict(row) for row in conn.execute(query, tuple(params)).fetchall()]


def _map_sqlite_error(exc: sqlite3.Error) -> CaseMapError:
    message = str(exc)
    lowered = message.lower()
    if isinstance(exc, sqlite3.IntegrityError):
        return ReferentialIntegrityError(f"Constraint violated: {message}")
    if isinstance(exc, sqlite3.OperationalError) and (
        "interrupted" in lowered or "locked" in lowered or "busy" in lowered
    ):
        return TransactionInterrupted(
            "Transaction failed - the database operation was interrupted. Please try again.",
            details={"cause": message},
        )
    return PersistenceError("Database error occurred", details={"cause": message})


@contextmanager
def transaction(conn: sqlite3.Connection, timeout_seconds: Optional[float] = None) -> Iterator[sqlite3.Connection]:
    """
    Run the enclosed statements as one atomic unit.

    Joins the surrounding transaction if one is already open on `conn`. When
    `timeout_seconds` is given the transaction is interrupted once the deadline
    passes, which surfaces as TransactionInterrupted.
    """
    if conn.in_transaction:
        yield conn
        return

    deadline = time.monotonic() + timeout_seconds if timeout_seconds else None
    if deadline is not None:
        conn.set_progress_handler(lambda: 1 if time.monotonic() > deadline else 0, _PROGRESS_HANDLER_STEPS)
    try:
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            raise _map_sqlite_error(e) from e
        try:
            yield conn
            conn.execute("COMMIT")
        except BaseException as e:
            if deadline is not None:
                conn.set_progress_handler(None, 0)
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            if isinstance(e, sqlite3.Error):
                mapped = _map_sqlite_error(e)
                logger.error(f"SQLite transaction rolled back: {e}")
                raise mapped from e
            raise
    finally:
        if deadline is not None:
            conn.set_progress_handler(None, 0)
