"""
SQLite connection management.

``get_connection()`` yields one configured connection per sync run:
  - foreign keys enforced (``transactions.product_id`` → ``products.id``);
  - WAL journal so the read service can query while a sync writes;
  - busy timeout used as the connection acquire timeout;
  - ``sqlite3.Row`` rows.

The context manager commits whatever is still pending on clean exit and
rolls back on exception. Per-record sync writes commit individually (see
``pipeline.reconcile``), so a rollback here never undoes records that were
already reported as written.

Usage::

    from pure_ingest.db.connection import get_connection

    with get_connection(config.database.db_path) as conn:
        ProductRepository(conn).upsert(record)
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

logger = logging.getLogger(__name__)


@contextmanager
def get_connection(
    db_path: str,
    wal_mode: bool = True,
    busy_timeout_ms: int = 3000,
) -> Generator[sqlite3.Connection, None, None]:
    """Context manager yielding a configured SQLite connection.

    The database file (and any parent directories) are created if they do
    not already exist.

    Args:
        db_path: Path to the SQLite database file, or ``":memory:"``.
        wal_mode: Enable WAL journal mode.
        busy_timeout_ms: Milliseconds to wait on a locked database before
            raising ``OperationalError``.

    Raises:
        sqlite3.OperationalError: If the database cannot be opened or is locked.
    """
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path, timeout=busy_timeout_ms / 1000)
    conn.row_factory = sqlite3.Row

    try:
        conn.execute("PRAGMA foreign_keys = ON;")
        conn.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)};")
        if wal_mode and db_path != ":memory:":
            conn.execute("PRAGMA journal_mode = WAL;")

        yield conn
        conn.commit()

    except Exception:
        conn.rollback()
        raise

    finally:
        conn.close()
