"""Tests for schema DDL and migrations."""

from __future__ import annotations

import sqlite3

import pytest

from pure_ingest.db.migrations import MIGRATIONS, init_database, run_migrations
from pure_ingest.db.schema import ALL_TABLE_NAMES, apply_schema, get_existing_tables


def _columns(conn: sqlite3.Connection, table: str) -> set[str]:
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table});").fetchall()}


class TestApplySchema:
    def test_creates_all_tables(self, in_memory_db):
        tables = get_existing_tables(in_memory_db)
        for name in ALL_TABLE_NAMES:
            assert name in tables

    def test_is_idempotent(self, in_memory_db):
        apply_schema(in_memory_db)
        apply_schema(in_memory_db)
        assert set(ALL_TABLE_NAMES) <= set(get_existing_tables(in_memory_db))

    def test_products_natural_key_is_unique(self, in_memory_db):
        sql = (
            "INSERT INTO products (pure_product_id, pure_variant_id, name, sku, material, "
            "variant_label) VALUES ('p', 'v', 'n', 's', 'm', 'l');"
        )
        in_memory_db.execute(sql)
        with pytest.raises(sqlite3.IntegrityError):
            in_memory_db.execute(sql)

    def test_transactions_require_existing_product(self, in_memory_db):
        with pytest.raises(sqlite3.IntegrityError):
            in_memory_db.execute(
                "INSERT INTO transactions (product_id, pure_product_id, pure_variant_id, price, "
                "quantity, spot_premium_percentage, spot_premium_dollar, event_time) "
                "VALUES (999, 'p', 'v', 1.0, 1, 1.0, 1.0, '2025-01-01T00:00:00.000000+00:00');"
            )

    def test_event_type_check_constraint(self, in_memory_db):
        in_memory_db.execute(
            "INSERT INTO products (pure_product_id, pure_variant_id, name, sku, material, "
            "variant_label) VALUES ('p', 'v', 'n', 's', 'm', 'l');"
        )
        with pytest.raises(sqlite3.IntegrityError):
            in_memory_db.execute(
                "INSERT INTO transactions (product_id, pure_product_id, pure_variant_id, price, "
                "quantity, spot_premium_percentage, spot_premium_dollar, event_time, event_type) "
                "VALUES (1, 'p', 'v', 1.0, 1, 1.0, 1.0, '2025-01-01T00:00:00.000000+00:00', 'hold');"
            )


class TestMigrations:
    def test_fresh_database_records_every_migration(self, in_memory_db):
        applied = run_migrations(in_memory_db)
        assert applied == len(MIGRATIONS)
        assert run_migrations(in_memory_db) == 0

    def test_init_database_from_empty(self):
        conn = sqlite3.connect(":memory:")
        try:
            assert init_database(conn) == len(MIGRATIONS)
            assert set(ALL_TABLE_NAMES) <= set(get_existing_tables(conn))
        finally:
            conn.close()

    def test_upgrades_legacy_tables(self):
        """A store from before market data, event types and images gains the columns."""
        conn = sqlite3.connect(":memory:")
        try:
            conn.executescript("""
                CREATE TABLE products (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    pure_product_id TEXT NOT NULL,
                    pure_variant_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    sku TEXT NOT NULL,
                    material TEXT NOT NULL,
                    variant_label TEXT NOT NULL,
                    created_at TEXT, updated_at TEXT,
                    UNIQUE(pure_product_id, pure_variant_id)
                );
                CREATE TABLE transactions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    product_id INTEGER NOT NULL REFERENCES products(id),
                    pure_product_id TEXT NOT NULL,
                    pure_variant_id TEXT NOT NULL,
                    price REAL NOT NULL,
                    quantity INTEGER NOT NULL,
                    spot_premium_percentage REAL NOT NULL,
                    spot_premium_dollar REAL NOT NULL,
                    event_time TEXT NOT NULL,
                    created_at TEXT, updated_at TEXT,
                    UNIQUE(event_time, pure_product_id, pure_variant_id)
                );
            """)

            init_database(conn)

            assert {
                "highest_offer_spot_premium",
                "lowest_listing_spot_premium",
                "market_data_updated_at",
                "image_url",
            } <= _columns(conn, "products")
            assert "event_type" in _columns(conn, "transactions")
        finally:
            conn.close()
