"""
Sequential schema migrations.

The ids follow the SQL migration history of the earlier Pure ingestion
service, so a store that service created before market data, event types or
image URLs existed is brought up to the current shape in place. Databases
created by this package already have every column from
``schema.apply_schema()``; for them each migration is a no-op that is only
recorded.

Not a migration framework: a ``schema_versions`` table records applied ids,
and ``run_migrations()`` applies whatever is missing, in insertion order.

Adding a migration:
  1. Define ``migration_NNNN_description(conn)``; make it safe to run on a
     database that already has the change.
  2. Register it in ``MIGRATIONS``.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable

logger = logging.getLogger(__name__)

MigrationFn = Callable[[sqlite3.Connection], None]


def _ensure_version_table(conn: sqlite3.Connection) -> None:
    conn.execute("""
        CREATE TABLE IF NOT EXISTS schema_versions (
            version_id  TEXT    NOT NULL PRIMARY KEY,
            applied_at  TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
            description TEXT
        );
    """)
    conn.commit()


def _get_applied_versions(conn: sqlite3.Connection) -> set[str]:
    rows = conn.execute("SELECT version_id FROM schema_versions;").fetchall()
    return {row[0] for row in rows}


def _mark_applied(conn: sqlite3.Connection, version_id: str, description: str) -> None:
    conn.execute(
        "INSERT INTO schema_versions(version_id, description) VALUES (?, ?);",
        (version_id, description),
    )
    conn.commit()


def _columns(conn: sqlite3.Connection, table: str) -> set[str]:
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table});").fetchall()}


# ── Migration functions ────────────────────────────────────────────────────────

def migration_0001_baseline(conn: sqlite3.Connection) -> None:
    """Anchor: products and transactions created by ``apply_schema``."""


def migration_0002_add_market_data(conn: sqlite3.Connection) -> None:
    """Add the market snapshot columns to ``products``."""
    existing = _columns(conn, "products")
    for column, ddl_type in (
        ("highest_offer_spot_premium", "REAL"),
        ("lowest_listing_spot_premium", "REAL"),
        ("market_data_updated_at", "TEXT"),
    ):
        if column not in existing:
            conn.execute(f"ALTER TABLE products ADD COLUMN {column} {ddl_type};")
    conn.commit()


def migration_0003_add_event_type(conn: sqlite3.Connection) -> None:
    """Add the derived ``event_type`` column to ``transactions``."""
    if "event_type" not in _columns(conn, "transactions"):
        conn.execute("ALTER TABLE transactions ADD COLUMN event_type TEXT;")
    conn.commit()


def migration_0004_add_image_url(conn: sqlite3.Connection) -> None:
    """Add ``image_url`` to ``products`` (populated by backfill-image-urls)."""
    if "image_url" not in _columns(conn, "products"):
        conn.execute("ALTER TABLE products ADD COLUMN image_url TEXT;")
    conn.commit()


MIGRATIONS: dict[str, tuple[MigrationFn, str]] = {
    "0001_baseline": (
        migration_0001_baseline,
        "Baseline: products and transactions tables",
    ),
    "0002_market_data": (
        migration_0002_add_market_data,
        "Add market snapshot columns to products",
    ),
    "0003_event_type": (
        migration_0003_add_event_type,
        "Add event_type to transactions",
    ),
    "0004_image_url": (
        migration_0004_add_image_url,
        "Add image_url to products",
    ),
}


def run_migrations(conn: sqlite3.Connection) -> int:
    """Apply all pending migrations.

    Returns:
        Number of migrations applied in this call.
    """
    _ensure_version_table(conn)
    applied = _get_applied_versions(conn)

    count = 0
    for version_id, (fn, description) in MIGRATIONS.items():
        if version_id in applied:
            logger.debug("Migration %s already applied; skipping.", version_id)
            continue

        logger.info("Applying migration %s: %s", version_id, description)
        try:
            fn(conn)
            _mark_applied(conn, version_id, description)
            count += 1
        except Exception as exc:
            conn.rollback()
            logger.error("Migration %s FAILED: %s", version_id, exc)
            raise

    if count:
        logger.info("Applied %d migration(s).", count)
    else:
        logger.debug("No pending migrations.")

    return count


def init_database(conn: sqlite3.Connection) -> int:
    """Apply the schema, then pending migrations. Returns migrations applied."""
    from pure_ingest.db.schema import apply_schema

    apply_schema(conn)
    return run_migrations(conn)
