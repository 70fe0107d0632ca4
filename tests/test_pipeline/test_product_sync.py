"""Tests for ProductSyncStage against the fake provider."""

from __future__ import annotations

from pure_ingest.db.connection import get_connection
from pure_ingest.db.repositories.product_repo import ProductRepository
from pure_ingest.pipeline.product_sync import ProductSyncStage


def _stored(db_path: str):
    with get_connection(db_path) as conn:
        return ProductRepository(conn).get_all()


class TestProductSyncStage:
    def test_upserts_joined_variants(self, app_config, db_file, pure_api):
        pure_api.add_product(
            "p1", "Eagle", [("v1", "1 oz", 1.0, 3.0), ("v2", "Proof", None, 6.0)],
            image_url="https://img.test/p1.png",
        )

        report = ProductSyncStage(config=app_config, client=pure_api.client()).run()

        assert report.run.status == "success"
        assert report.upserts.succeeded == 2
        stored = {p.pure_variant_id: p for p in _stored(db_file)}
        assert stored["v1"].highest_offer_spot_premium == 1.0
        assert stored["v2"].highest_offer_spot_premium is None
        assert stored["v2"].lowest_listing_spot_premium == 6.0
        assert stored["v1"].image_url == "https://img.test/p1.png"
        assert stored["v1"].market_data_updated_at is not None

    def test_failing_chunk_end_to_end(self, app_config, db_file, pure_api):
        """Batch size 1, one chunk never succeeds: only the other product lands."""
        pure_api.add_product("p1", "Eagle", [("v1", "1 oz", 1.0, 3.0)])
        pure_api.add_product("p2", "Maple", [("v2", "1 oz", 1.5, 3.5)])
        pure_api.failing_product_ids.add("p2")

        report = ProductSyncStage(
            config=app_config, client=pure_api.client(product_batch_size=1)
        ).run()

        assert [p.key for p in _stored(db_file)] == [("p1", "v1")]
        assert report.products_requested == 2
        assert report.products_fetched == 1
        assert len(report.failed_batches) == 1
        assert len(report.join_misses) == 1
        assert report.run.status == "partial"
        assert report.run.rows_skipped == 1

    def test_blank_variant_id_is_skipped_not_fatal(self, app_config, db_file, pure_api):
        pure_api.add_product("p1", "Eagle", [("v1", "1 oz", 1.0, 3.0)])
        pure_api.add_product("p2", "Maple", [(" ", "1 oz", 1.5, 3.5)])

        report = ProductSyncStage(config=app_config, client=pure_api.client()).run()

        assert [p.key for p in _stored(db_file)] == [("p1", "v1")]
        assert report.run.status == "partial"
        assert report.rows_skipped == 1

    def test_rerun_is_idempotent(self, app_config, db_file, pure_api):
        pure_api.add_product("p1", "Eagle", [("v1", "1 oz", 1.0, 3.0)])
        client = pure_api.client()

        ProductSyncStage(config=app_config, client=client).run()
        pure_api.products["p1"]["variants"][0]["highestOffer"] = {"spotPremium": 2.25}
        ProductSyncStage(config=app_config, client=client).run()

        [stored] = _stored(db_file)
        assert stored.highest_offer_spot_premium == 2.25

    def test_empty_catalog(self, app_config, db_file, pure_api):
        report = ProductSyncStage(config=app_config, client=pure_api.client()).run()

        assert report.run.status == "success"
        assert report.rows_written == 0
        assert _stored(db_file) == []
