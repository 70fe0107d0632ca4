"""
SQLite schema DDL for the ingestion store.

All statements use ``IF NOT EXISTS`` so ``apply_schema()`` is idempotent.

Tables (in FK order):
  1. products      — one row per provider variant; natural key
                     ``(pure_product_id, pure_variant_id)``
  2. transactions  — one row per trade event; natural key
                     ``(event_time, pure_product_id, pure_variant_id)``;
                     ``product_id`` → products.id
  3. sync_runs     — audit log of stage executions

The read service queries ``products`` and ``transactions`` directly, so
column names here are part of its contract.
"""

from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)

_NOW = "(strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))"

# ── DDL statements ─────────────────────────────────────────────────────────────

_DDL_PRODUCTS = f"""
CREATE TABLE IF NOT EXISTS products (
    id                          INTEGER PRIMARY KEY AUTOINCREMENT,
    pure_product_id             TEXT    NOT NULL,
    pure_variant_id             TEXT    NOT NULL,
    name                        TEXT    NOT NULL,
    sku                         TEXT    NOT NULL,
    material                    TEXT    NOT NULL,
    variant_label               TEXT    NOT NULL,
    image_url                   TEXT,
    highest_offer_spot_premium  REAL,
    lowest_listing_spot_premium REAL,
    market_data_updated_at      TEXT,
    created_at                  TEXT    NOT NULL DEFAULT {_NOW},
    updated_at                  TEXT    NOT NULL DEFAULT {_NOW},
    UNIQUE(pure_product_id, pure_variant_id)
);
"""

_DDL_TRANSACTIONS = f"""
CREATE TABLE IF NOT EXISTS transactions (
    id                      INTEGER PRIMARY KEY AUTOINCREMENT,
    product_id              INTEGER NOT NULL REFERENCES products(id) ON DELETE CASCADE,
    pure_product_id         TEXT    NOT NULL,
    pure_variant_id         TEXT    NOT NULL,
    price                   REAL    NOT NULL,
    quantity                INTEGER NOT NULL,
    spot_premium_percentage REAL    NOT NULL,
    spot_premium_dollar     REAL    NOT NULL,
    event_time              TEXT    NOT NULL,
    event_type              TEXT    CHECK (event_type IN ('buy', 'sell', 'unknown')),
    created_at              TEXT    NOT NULL DEFAULT {_NOW},
    updated_at              TEXT    NOT NULL DEFAULT {_NOW},
    UNIQUE(event_time, pure_product_id, pure_variant_id)
);
"""

_DDL_TRANSACTIONS_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_transactions_product_id
    ON transactions(product_id);
CREATE INDEX IF NOT EXISTS idx_transactions_event_time
    ON transactions(event_time DESC);
CREATE INDEX IF NOT EXISTS idx_transactions_pure_ids
    ON transactions(pure_product_id, pure_variant_id);
"""

_DDL_SYNC_RUNS = f"""
CREATE TABLE IF NOT EXISTS sync_runs (
    run_id          INTEGER PRIMARY KEY AUTOINCREMENT,
    run_slug        TEXT    NOT NULL UNIQUE,
    stage           TEXT    NOT NULL,
    status          TEXT    NOT NULL DEFAULT 'started',
    config_snapshot TEXT    NOT NULL,
    rows_processed  INTEGER NOT NULL DEFAULT 0,
    rows_skipped    INTEGER NOT NULL DEFAULT 0,
    error_message   TEXT,
    started_at      TEXT    NOT NULL DEFAULT {_NOW},
    finished_at     TEXT
);
"""

_DDL_SYNC_RUNS_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_sync_runs_stage_started
    ON sync_runs(stage, started_at);
"""

_ALL_DDL: list[str] = [
    _DDL_PRODUCTS,
    _DDL_TRANSACTIONS,
    _DDL_TRANSACTIONS_INDEXES,
    _DDL_SYNC_RUNS,
    _DDL_SYNC_RUNS_INDEXES,
]

ALL_TABLE_NAMES = ["products", "transactions", "sync_runs"]


def apply_schema(conn: sqlite3.Connection) -> None:
    """Apply all DDL statements to ``conn``. Idempotent."""
    logger.debug("Applying schema to database...")

    for ddl in _ALL_DDL:
        for statement in _split_ddl(ddl):
            conn.execute(statement)

    conn.commit()
    logger.info("Schema applied: %d tables, indexes created/verified.", len(ALL_TABLE_NAMES))


def _split_ddl(ddl: str) -> list[str]:
    """Split a multi-statement DDL block on semicolons."""
    return [s.strip() for s in ddl.split(";") if s.strip()]


def get_existing_tables(conn: sqlite3.Connection) -> list[str]:
    """Return table names present in the database (sorted)."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name;"
    ).fetchall()
    return [row[0] for row in rows]
