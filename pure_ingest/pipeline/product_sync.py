"""
Product sync stage.

Fetches the option tree and product details through ``PureApiClient``,
inner-joins them into ``NewProductVariant`` records, and upserts each one
into ``products``. Chunks that exhaust their retries are skipped by the
client; their variants surface here as join misses.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from pure_ingest.db.repositories.product_repo import ProductRepository
from pure_ingest.ingestion.pure_client import FailedBatch, FlattenedVariant
from pure_ingest.models.meta import SyncRun
from pure_ingest.models.product import NewProductVariant
from pure_ingest.pipeline.base import StageReport, SyncStage
from pure_ingest.pipeline.reconcile import BatchReport, upsert_each

logger = logging.getLogger(__name__)


def product_key(record: NewProductVariant) -> str:
    return f"product={record.pure_product_id} variant={record.pure_variant_id}"


@dataclass
class ProductSyncReport(StageReport):
    variants_flattened: int = 0
    products_requested: int = 0
    products_fetched: int = 0
    failed_batches: list[FailedBatch] = field(default_factory=list)
    join_misses: list[FlattenedVariant] = field(default_factory=list)
    upserts: BatchReport = field(default_factory=BatchReport)

    @property
    def rows_written(self) -> int:
        return self.upserts.succeeded

    @property
    def rows_skipped(self) -> int:
        return len(self.join_misses) + len(self.upserts.skipped)


class ProductSyncStage(SyncStage):
    """Refresh ``products`` from the Pure catalog."""

    stage_name = "product_sync"

    def _execute(self, run: SyncRun, **kwargs) -> ProductSyncReport:
        with self.api_client() as client:
            build = client.build_new_products()

        report = ProductSyncReport(
            variants_flattened=build.variants_flattened,
            products_requested=build.products_requested,
            products_fetched=build.products_fetched,
            failed_batches=build.failed_batches,
            join_misses=build.join_misses,
        )

        with self.connection() as conn:
            repo = ProductRepository(conn)
            report.upserts = upsert_each(conn, build.records, repo.upsert, product_key)

        logger.info(
            "Product sync: %d variants, %d/%d products fetched, %d failed batches, "
            "%d upserted, %d upsert failures",
            report.variants_flattened, report.products_fetched, report.products_requested,
            len(report.failed_batches), report.upserts.succeeded, len(report.upserts.skipped),
        )
        return report
