"""
Transaction sync stage.

For every stored variant, fetch its activity history, classify each trade
against the variant's stored market snapshot, and upsert the results into
``transactions``. A variant whose activity call exhausts its retries is
logged and skipped; the stage moves on to the next variant.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from pure_ingest.db.repositories.product_repo import ProductRepository
from pure_ingest.db.repositories.transaction_repo import TransactionRepository
from pure_ingest.errors import RetryExhaustedError
from pure_ingest.ingestion.activity import fetch_transactions_for_variant
from pure_ingest.models.meta import SyncRun
from pure_ingest.models.transaction import NewTransaction
from pure_ingest.pipeline.base import StageReport, SyncStage
from pure_ingest.pipeline.reconcile import BatchReport, SkippedRecord, upsert_each

logger = logging.getLogger(__name__)


def transaction_key(record: NewTransaction) -> str:
    return (
        f"product={record.pure_product_id} variant={record.pure_variant_id} "
        f"event_time={record.event_time.isoformat()}"
    )


@dataclass
class TransactionSyncReport(StageReport):
    variants_total: int = 0
    variants_failed: list[SkippedRecord] = field(default_factory=list)
    events_received: int = 0
    parse_errors: int = 0
    upserts: BatchReport = field(default_factory=BatchReport)

    @property
    def rows_written(self) -> int:
        return self.upserts.succeeded

    @property
    def rows_skipped(self) -> int:
        return len(self.variants_failed) + self.parse_errors + len(self.upserts.skipped)


class TransactionSyncStage(SyncStage):
    """Pull per-variant trade activity into ``transactions``."""

    stage_name = "transaction_sync"

    def _execute(self, run: SyncRun, **kwargs) -> TransactionSyncReport:
        report = TransactionSyncReport()

        with self.api_client() as client, self.connection() as conn:
            variants = ProductRepository(conn).get_all()
            txn_repo = TransactionRepository(conn)
            report.variants_total = len(variants)
            logger.info("Fetching activity for %d variants", len(variants))

            for index, variant in enumerate(variants, start=1):
                try:
                    built = fetch_transactions_for_variant(client, variant)
                except RetryExhaustedError as exc:
                    logger.error(
                        "Skipping variant %d/%d (product %s, variant %s): %s",
                        index, len(variants), variant.pure_product_id,
                        variant.pure_variant_id, exc,
                    )
                    report.variants_failed.append(
                        SkippedRecord(
                            f"product={variant.pure_product_id} variant={variant.pure_variant_id}",
                            str(exc),
                        )
                    )
                    continue

                report.events_received += built.events_received
                report.parse_errors += len(built.parse_errors)
                report.upserts.merge(
                    upsert_each(conn, built.transactions, txn_repo.upsert, transaction_key)
                )
                logger.debug(
                    "Variant %d/%d: %d events, %d built",
                    index, len(variants), built.events_received, len(built.transactions),
                )

        logger.info(
            "Transaction sync: %d variants (%d failed), %d events, %d upserted, "
            "%d parse errors, %d upsert failures",
            report.variants_total, len(report.variants_failed), report.events_received,
            report.upserts.succeeded, report.parse_errors, len(report.upserts.skipped),
        )
        return report
