"""Tests for the SyncStage base: run bookkeeping in sync_runs."""

from __future__ import annotations

from dataclasses import dataclass

import pytest

from pure_ingest.db.connection import get_connection
from pure_ingest.db.repositories.run_repo import SyncRunRepository
from pure_ingest.pipeline.base import StageReport, SyncStage
from pure_ingest.pipeline.product_sync import ProductSyncStage
from pure_ingest.pipeline.transaction_sync import TransactionSyncStage
from pure_ingest.pipeline.backfill import EventTypeBackfill, ImageUrlBackfill


@dataclass
class _CountingReport(StageReport):
    written: int = 0
    skipped: int = 0

    @property
    def rows_written(self) -> int:
        return self.written

    @property
    def rows_skipped(self) -> int:
        return self.skipped


class _StubStage(SyncStage):
    stage_name = "product_sync"

    def _execute(self, run, written=0, skipped=0, fail=False, **kwargs):
        if fail:
            raise RuntimeError("provider down")
        return _CountingReport(written=written, skipped=skipped)


def _runs(db_path: str):
    with get_connection(db_path) as conn:
        return SyncRunRepository(conn).get_recent_runs()


class TestSyncStageABC:
    def test_cannot_instantiate_base_directly(self, app_config):
        with pytest.raises(TypeError):
            SyncStage(config=app_config)  # type: ignore

    def test_stage_names(self):
        assert ProductSyncStage.stage_name == "product_sync"
        assert TransactionSyncStage.stage_name == "transaction_sync"
        assert EventTypeBackfill.stage_name == "backfill_event_types"
        assert ImageUrlBackfill.stage_name == "backfill_image_urls"


class TestRunBookkeeping:
    def test_success(self, app_config, db_file):
        report = _StubStage(config=app_config).run(written=5)

        assert report.run.status == "success"
        [stored] = _runs(db_file)
        assert stored.run_slug == report.run.run_slug
        assert stored.status == "success"
        assert stored.rows_processed == 5
        assert stored.finished_at is not None

    def test_skips_make_the_run_partial(self, app_config, db_file):
        report = _StubStage(config=app_config).run(written=5, skipped=1)

        assert report.run.status == "partial"
        assert _runs(db_file)[0].rows_skipped == 1

    def test_failure_is_recorded_and_reraised(self, app_config, db_file):
        with pytest.raises(RuntimeError, match="provider down"):
            _StubStage(config=app_config).run(fail=True)

        [stored] = _runs(db_file)
        assert stored.status == "failed"
        assert stored.error_message == "provider down"

    def test_config_snapshot_masks_api_key(self, app_config, db_file):
        _StubStage(config=app_config).run()

        snapshot = _runs(db_file)[0].config_snapshot
        assert snapshot["api"]["api_key"] != "test-key"
        assert "test-key" not in str(snapshot)

    def test_db_path_override(self, app_config, tmp_path):
        from pure_ingest.db.migrations import init_database

        other = str(tmp_path / "other.db")
        with get_connection(other) as conn:
            init_database(conn)

        _StubStage(config=app_config, db_path=other).run()

        assert len(_runs(other)) == 1
