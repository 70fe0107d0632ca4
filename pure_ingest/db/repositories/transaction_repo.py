"""
Repository for the ``transactions`` table.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Optional

from pure_ingest.db.repositories.base import BaseRepository
from pure_ingest.errors import UnknownVariantError
from pure_ingest.models.transaction import EventType, NewTransaction, Transaction
from pure_ingest.utils.time_utils import from_db_timestamp, to_db_timestamp

logger = logging.getLogger(__name__)

_UPSERT_SQL = """
INSERT INTO transactions (
    product_id, pure_product_id, pure_variant_id, price, quantity,
    spot_premium_percentage, spot_premium_dollar, event_time, event_type
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT (event_time, pure_product_id, pure_variant_id) DO UPDATE SET
    product_id              = excluded.product_id,
    price                   = excluded.price,
    quantity                = excluded.quantity,
    spot_premium_percentage = excluded.spot_premium_percentage,
    spot_premium_dollar     = excluded.spot_premium_dollar,
    event_type              = excluded.event_type,
    updated_at              = strftime('%Y-%m-%dT%H:%M:%fZ', 'now');
"""


class TransactionRepository(BaseRepository):
    """Read/write access to the ``transactions`` table."""

    def resolve_product_id(self, pure_product_id: str, pure_variant_id: str) -> int:
        """Look up ``products.id`` for a natural variant key.

        Raises:
            UnknownVariantError: If no product row has that key.
        """
        value = self.scalar(
            "SELECT id FROM products WHERE pure_product_id = ? AND pure_variant_id = ?;",
            (pure_product_id, pure_variant_id),
        )
        if value is None:
            raise UnknownVariantError(pure_product_id, pure_variant_id)
        return int(value)

    def upsert(self, record: NewTransaction) -> int:
        """Insert a transaction, or overwrite the non-key fields of its twin.

        The owning product is resolved from the natural variant key on every
        call; ``record.product_id`` is not trusted.

        Returns:
            The surrogate ``transactions.id``.

        Raises:
            UnknownVariantError: If the variant is not in ``products``.
        """
        product_id = self.resolve_product_id(record.pure_product_id, record.pure_variant_id)
        event_time = to_db_timestamp(record.event_time)
        self.execute(
            _UPSERT_SQL,
            (
                product_id,
                record.pure_product_id,
                record.pure_variant_id,
                record.price,
                record.quantity,
                record.spot_premium_percentage,
                record.spot_premium_dollar,
                event_time,
                record.event_type.value if record.event_type else None,
            ),
        )
        return int(self.scalar(
            """
            SELECT id FROM transactions
            WHERE event_time = ? AND pure_product_id = ? AND pure_variant_id = ?;
            """,
            (event_time, record.pure_product_id, record.pure_variant_id),
        ))

    def update_event_type(self, transaction_id: int, event_type: EventType) -> bool:
        """Overwrite the classification of one stored transaction."""
        cur = self.execute(
            """
            UPDATE transactions
            SET event_type = ?, updated_at = strftime('%Y-%m-%dT%H:%M:%fZ', 'now')
            WHERE id = ?;
            """,
            (event_type.value, transaction_id),
        )
        return cur.rowcount > 0

    def fetch_page(self, after_id: int, limit: int) -> list[Transaction]:
        """Return up to ``limit`` transactions with ``id > after_id``, ordered by id.

        Keyset paging keeps pages stable while the backfill updates rows.
        """
        rows = self.fetchall(
            "SELECT * FROM transactions WHERE id > ? ORDER BY id LIMIT ?;",
            (after_id, limit),
        )
        return [_row_to_transaction(r) for r in rows]

    def get_by_natural_key(
        self, event_time, pure_product_id: str, pure_variant_id: str
    ) -> Optional[Transaction]:
        row = self.fetchone(
            """
            SELECT * FROM transactions
            WHERE event_time = ? AND pure_product_id = ? AND pure_variant_id = ?;
            """,
            (to_db_timestamp(event_time), pure_product_id, pure_variant_id),
        )
        return _row_to_transaction(row) if row else None

    def get_for_variant(self, pure_product_id: str, pure_variant_id: str) -> list[Transaction]:
        """All transactions of one variant, newest first."""
        rows = self.fetchall(
            """
            SELECT * FROM transactions
            WHERE pure_product_id = ? AND pure_variant_id = ?
            ORDER BY event_time DESC;
            """,
            (pure_product_id, pure_variant_id),
        )
        return [_row_to_transaction(r) for r in rows]

    def count(self) -> int:
        return int(self.scalar("SELECT COUNT(*) FROM transactions;"))


# ── Private helpers ────────────────────────────────────────────────────────────

def _row_to_transaction(row: sqlite3.Row) -> Transaction:
    return Transaction(
        id=row["id"],
        product_id=row["product_id"],
        pure_product_id=row["pure_product_id"],
        pure_variant_id=row["pure_variant_id"],
        price=row["price"],
        quantity=row["quantity"],
        spot_premium_percentage=row["spot_premium_percentage"],
        spot_premium_dollar=row["spot_premium_dollar"],
        event_time=from_db_timestamp(row["event_time"]),
        event_type=EventType(row["event_type"]) if row["event_type"] else None,
        created_at=from_db_timestamp(row["created_at"]),
        updated_at=from_db_timestamp(row["updated_at"]),
    )
