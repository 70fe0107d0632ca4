"""
Repository for the ``products`` table (one row per provider variant).
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Optional

from pure_ingest.db.repositories.base import BaseRepository
from pure_ingest.models.product import NewProductVariant, ProductVariant, VariantKey
from pure_ingest.utils.time_utils import from_db_timestamp, to_db_timestamp

logger = logging.getLogger(__name__)

_UPSERT_SQL = """
INSERT INTO products (
    pure_product_id, pure_variant_id, name, sku, material, variant_label,
    image_url, highest_offer_spot_premium, lowest_listing_spot_premium,
    market_data_updated_at
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT (pure_product_id, pure_variant_id) DO UPDATE SET
    name                        = excluded.name,
    sku                         = excluded.sku,
    material                    = excluded.material,
    variant_label               = excluded.variant_label,
    image_url                   = excluded.image_url,
    highest_offer_spot_premium  = excluded.highest_offer_spot_premium,
    lowest_listing_spot_premium = excluded.lowest_listing_spot_premium,
    market_data_updated_at      = excluded.market_data_updated_at,
    updated_at                  = strftime('%Y-%m-%dT%H:%M:%fZ', 'now');
"""


class ProductRepository(BaseRepository):
    """Read/write access to the ``products`` table."""

    def upsert(self, record: NewProductVariant) -> int:
        """Insert a variant, or overwrite every non-key field of the existing row.

        Args:
            record: The upsert-ready variant.

        Returns:
            The surrogate ``products.id`` of the inserted or updated row.
        """
        self.execute(
            _UPSERT_SQL,
            (
                record.pure_product_id,
                record.pure_variant_id,
                record.name,
                record.sku,
                record.material,
                record.variant_label,
                record.image_url,
                record.highest_offer_spot_premium,
                record.lowest_listing_spot_premium,
                to_db_timestamp(record.market_data_updated_at),
            ),
        )
        product_id = self.get_id(record.pure_product_id, record.pure_variant_id)
        assert product_id is not None
        return product_id

    def update_market_data(self, record: NewProductVariant) -> bool:
        """Refresh only the market snapshot of an existing row.

        Returns:
            ``True`` if a row matched the natural key.
        """
        cur = self.execute(
            """
            UPDATE products SET
                highest_offer_spot_premium  = ?,
                lowest_listing_spot_premium = ?,
                market_data_updated_at      = ?,
                updated_at                  = strftime('%Y-%m-%dT%H:%M:%fZ', 'now')
            WHERE pure_product_id = ? AND pure_variant_id = ?;
            """,
            (
                record.highest_offer_spot_premium,
                record.lowest_listing_spot_premium,
                to_db_timestamp(record.market_data_updated_at),
                record.pure_product_id,
                record.pure_variant_id,
            ),
        )
        return cur.rowcount > 0

    def update_image_url(self, record: NewProductVariant) -> bool:
        """Set ``image_url`` on an existing row. Returns ``True`` if a row matched."""
        cur = self.execute(
            """
            UPDATE products SET
                image_url  = ?,
                updated_at = strftime('%Y-%m-%dT%H:%M:%fZ', 'now')
            WHERE pure_product_id = ? AND pure_variant_id = ?;
            """,
            (record.image_url, record.pure_product_id, record.pure_variant_id),
        )
        return cur.rowcount > 0

    def get_id(self, pure_product_id: str, pure_variant_id: str) -> Optional[int]:
        """Resolve the surrogate id for a natural key, or ``None``."""
        value = self.scalar(
            "SELECT id FROM products WHERE pure_product_id = ? AND pure_variant_id = ?;",
            (pure_product_id, pure_variant_id),
        )
        return int(value) if value is not None else None

    def get_by_key(self, pure_product_id: str, pure_variant_id: str) -> Optional[ProductVariant]:
        row = self.fetchone(
            "SELECT * FROM products WHERE pure_product_id = ? AND pure_variant_id = ?;",
            (pure_product_id, pure_variant_id),
        )
        return _row_to_product(row) if row else None

    def get_all(self) -> list[ProductVariant]:
        """Every stored variant, in insertion order."""
        rows = self.fetchall("SELECT * FROM products ORDER BY id;")
        return [_row_to_product(r) for r in rows]

    def get_variant_index(self) -> dict[VariantKey, ProductVariant]:
        """All stored variants keyed by ``(pure_product_id, pure_variant_id)``."""
        return {p.key: p for p in self.get_all()}

    def count(self) -> int:
        return int(self.scalar("SELECT COUNT(*) FROM products;"))


# ── Private helpers ────────────────────────────────────────────────────────────

def _row_to_product(row: sqlite3.Row) -> ProductVariant:
    return ProductVariant(
        id=row["id"],
        pure_product_id=row["pure_product_id"],
        pure_variant_id=row["pure_variant_id"],
        name=row["name"],
        sku=row["sku"],
        material=row["material"],
        variant_label=row["variant_label"],
        image_url=row["image_url"],
        highest_offer_spot_premium=row["highest_offer_spot_premium"],
        lowest_listing_spot_premium=row["lowest_listing_spot_premium"],
        market_data_updated_at=from_db_timestamp(row["market_data_updated_at"]),
        created_at=from_db_timestamp(row["created_at"]),
        updated_at=from_db_timestamp(row["updated_at"]),
    )
