"""
core/db.py -- Engine construction and timestamp helper shared by the stores.

auth/store.py and vault/store.py each own their tables but build their engine
the same way:
  - SQLite connections may be used from any worker thread of the ASGI server
    (check_same_thread=False)
  - every new SQLite connection switches to WAL journal mode

Layer rule: core/ is the kernel. No imports from api/, auth/, or vault/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str) -> Engine:
    """Create an engine for db_url, with the SQLite connection settings applied."""
    is_sqlite = db_url.startswith("sqlite")
    connect_args: dict = {"check_same_thread": False} if is_sqlite else {}
    engine = create_engine(db_url, connect_args=connect_args)
    if is_sqlite:
        event.listen(engine, "connect", _set_wal_mode)
    return engine


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string, the format of every *_at column."""
    return datetime.now(timezone.utc).isoformat()
