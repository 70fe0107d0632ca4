"""
Backfill stages: event-type re-derivation and image URL backfill.

EventTypeBackfill
    1. (optional) refresh market snapshots on stored products from a fresh
       catalog fetch; rows the catalog no longer lists keep their old snapshot
    2. index every stored variant by natural key
    3. walk ``transactions`` in id order, one page at a time, and rewrite
       ``event_type`` from the variant's current snapshot

    A transaction whose variant is missing from the index is an integrity
    anomaly (the FK should prevent it). It is logged and left untouched.

ImageUrlBackfill
    Sets ``image_url`` on product rows that already exist. Catalog variants
    with no stored row are counted as unmatched, never inserted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from pure_ingest.db.repositories.product_repo import ProductRepository
from pure_ingest.db.repositories.transaction_repo import TransactionRepository
from pure_ingest.ingestion.event_type import determine_event_type
from pure_ingest.models.meta import SyncRun
from pure_ingest.models.product import NewProductVariant
from pure_ingest.models.transaction import Transaction
from pure_ingest.pipeline.base import StageReport, SyncStage
from pure_ingest.pipeline.product_sync import product_key
from pure_ingest.pipeline.reconcile import BatchReport, upsert_each

logger = logging.getLogger(__name__)


@dataclass
class BackfillReport(StageReport):
    """Outcome of ``EventTypeBackfill``.

    Attributes:
        market_refresh: Per-record results of step 1 (empty when skipped).
        market_unmatched: Catalog variants with no stored row.
        pages: Transaction pages processed.
        reclassified: Per-transaction results of step 3.
        orphaned_transaction_ids: Transactions with no indexed variant.
    """

    market_refresh: BatchReport = field(default_factory=BatchReport)
    market_unmatched: list[str] = field(default_factory=list)
    pages: int = 0
    reclassified: BatchReport = field(default_factory=BatchReport)
    orphaned_transaction_ids: list[int] = field(default_factory=list)

    @property
    def rows_written(self) -> int:
        return self.reclassified.succeeded

    @property
    def rows_skipped(self) -> int:
        return (
            len(self.reclassified.skipped)
            + len(self.orphaned_transaction_ids)
            + len(self.market_refresh.skipped)
        )


@dataclass
class ImageBackfillReport(StageReport):
    catalog_variants: int = 0
    updates: BatchReport = field(default_factory=BatchReport)
    unmatched: list[str] = field(default_factory=list)

    @property
    def updated(self) -> int:
        return self.updates.succeeded - len(self.unmatched)

    @property
    def rows_written(self) -> int:
        return self.updated

    @property
    def rows_skipped(self) -> int:
        return len(self.updates.skipped)


def _track_unmatched(update, unmatched: list[str]):
    """Wrap a bool-returning repository update so misses land in ``unmatched``."""

    def _write(record: NewProductVariant) -> None:
        if not update(record):
            unmatched.append(product_key(record))

    return _write


class EventTypeBackfill(SyncStage):
    """Re-derive ``event_type`` for every stored transaction."""

    stage_name = "backfill_event_types"

    def _execute(
        self, run: SyncRun, refresh_market_data: bool = True, **kwargs
    ) -> BackfillReport:
        report = BackfillReport()

        if refresh_market_data:
            with self.api_client() as client:
                build = client.build_new_products()
            with self.connection() as conn:
                repo = ProductRepository(conn)
                report.market_refresh = upsert_each(
                    conn,
                    build.records,
                    _track_unmatched(repo.update_market_data, report.market_unmatched),
                    product_key,
                )
            logger.info(
                "Market refresh: %d catalog variants, %d unmatched",
                len(build.records), len(report.market_unmatched),
            )
        else:
            logger.info("Market refresh skipped; using stored snapshots")

        page_size = self.config.batch.transaction_insert_batch_size
        with self.connection() as conn:
            index = ProductRepository(conn).get_variant_index()
            txn_repo = TransactionRepository(conn)
            logger.info("Indexed %d stored variants", len(index))

            def _reclassify(txn: Transaction) -> None:
                variant = index[(txn.pure_product_id, txn.pure_variant_id)]
                event_type = determine_event_type(
                    txn.spot_premium_percentage,
                    variant.highest_offer_spot_premium,
                    variant.lowest_listing_spot_premium,
                )
                txn_repo.update_event_type(txn.id, event_type)

            after_id = 0
            while True:
                page = txn_repo.fetch_page(after_id, page_size)
                if not page:
                    break
                report.pages += 1
                after_id = page[-1].id

                resolvable = []
                for txn in page:
                    if (txn.pure_product_id, txn.pure_variant_id) in index:
                        resolvable.append(txn)
                        continue
                    logger.error(
                        "Transaction %d references unknown variant (product %s, variant %s)",
                        txn.id, txn.pure_product_id, txn.pure_variant_id,
                    )
                    report.orphaned_transaction_ids.append(txn.id)

                report.reclassified.merge(
                    upsert_each(conn, resolvable, _reclassify, lambda t: f"transaction={t.id}")
                )
                logger.debug("Page %d done (last id %d)", report.pages, after_id)

        logger.info(
            "Event type backfill: %d pages, %d reclassified, %d orphaned, %d failed",
            report.pages, report.reclassified.succeeded,
            len(report.orphaned_transaction_ids), len(report.reclassified.skipped),
        )
        return report


class ImageUrlBackfill(SyncStage):
    """Populate ``products.image_url`` from the current catalog."""

    stage_name = "backfill_image_urls"

    def _execute(self, run: SyncRun, **kwargs) -> ImageBackfillReport:
        with self.api_client() as client:
            build = client.build_new_products()

        report = ImageBackfillReport(catalog_variants=len(build.records))
        with self.connection() as conn:
            repo = ProductRepository(conn)
            report.updates = upsert_each(
                conn,
                build.records,
                _track_unmatched(repo.update_image_url, report.unmatched),
                product_key,
            )

        logger.info(
            "Image URL backfill: %d catalog variants, %d updated, %d unmatched",
            report.catalog_variants, report.updated, len(report.unmatched),
        )
        return report
