"""
Abstract base class for sync and backfill stages.

Every stage follows the same contract:
  1. Receive ``AppConfig`` (and optionally a ready ``PureApiClient``).
  2. ``run(**kwargs)`` is the sole public API.
  3. ``run()`` opens a ``SyncRun`` audit record, calls ``_execute()``, and
     writes the final status back to ``sync_runs``.
  4. ``_execute()`` returns a ``StageReport`` describing what was written
     and what was skipped.

Status rules:
  - ``success`` — finished, nothing skipped;
  - ``partial`` — finished, some records/chunks/variants skipped;
  - ``failed``  — ``_execute()`` raised; the exception is re-raised after the
    run record is written, so the scheduler can log it and carry on.

Usage::

    class MyStage(SyncStage):
        stage_name = "product_sync"

        def _execute(self, run: SyncRun, **kwargs) -> StageReport:
            ...

    report = MyStage(config=app_config).run()
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional
from uuid import uuid4

from pure_ingest.config import AppConfig
from pure_ingest.models.meta import SyncRun
from pure_ingest.utils.time_utils import utcnow

if TYPE_CHECKING:
    import sqlite3

    from pure_ingest.ingestion.pure_client import PureApiClient

logger = logging.getLogger(__name__)


@dataclass
class StageReport:
    """Common shape of every stage's result.

    Subclasses add stage-specific counters and override the two properties.
    ``run`` is attached by ``SyncStage.run()``.
    """

    run: Optional[SyncRun] = None

    @property
    def rows_written(self) -> int:
        return 0

    @property
    def rows_skipped(self) -> int:
        return 0


class SyncStage(ABC):
    """Abstract base for all stages.

    Attributes:
        stage_name: One of ``models.meta.VALID_STAGES``.
        config: The application configuration.
        db_path: SQLite path (defaults to ``config.database.db_path``).
    """

    stage_name: str

    def __init__(
        self,
        config: AppConfig,
        db_path: Optional[str] = None,
        client: Optional["PureApiClient"] = None,
    ) -> None:
        self.config = config
        self.db_path = db_path or config.database.db_path
        self._client = client

    def run(self, **kwargs) -> StageReport:
        """Execute this stage and record the outcome in ``sync_runs``.

        Raises:
            Exception: Re-raises anything from ``_execute()`` after recording
                ``status='failed'``.
        """
        run = SyncRun(
            run_slug=str(uuid4()),
            stage=self.stage_name,
            config_snapshot=self.config.model_dump(),
            started_at=utcnow(),
        )
        log_extra = {"stage": self.stage_name, "run_slug": run.run_slug}
        logger.info("Stage [%s] starting | run_slug=%s", self.stage_name, run.run_slug, extra=log_extra)
        self._persist_run(run)

        try:
            report = self._execute(run=run, **kwargs)
        except Exception as exc:
            run.status = "failed"
            run.error_message = str(exc)
            run.finished_at = utcnow()
            logger.error(
                "Stage [%s] FAILED: %s | run_slug=%s",
                self.stage_name, exc, run.run_slug, extra=log_extra,
            )
            self._persist_run(run)
            raise

        run.rows_processed = report.rows_written
        run.rows_skipped = report.rows_skipped
        run.status = "partial" if report.rows_skipped else "success"
        run.finished_at = utcnow()
        report.run = run
        logger.info(
            "Stage [%s] %s | rows=%d skipped=%d | run_slug=%s",
            self.stage_name, run.status, run.rows_processed, run.rows_skipped,
            run.run_slug, extra=log_extra,
        )
        self._persist_run(run)
        return report

    @abstractmethod
    def _execute(self, run: SyncRun, **kwargs) -> StageReport:
        """Stage-specific implementation."""
        ...

    # ── Shared resources ──────────────────────────────────────────────────────

    @contextmanager
    def connection(self) -> Iterator["sqlite3.Connection"]:
        """A configured connection to this stage's database."""
        from pure_ingest.db.connection import get_connection

        with get_connection(
            self.db_path,
            wal_mode=self.config.database.wal_mode,
            busy_timeout_ms=self.config.database.busy_timeout_ms,
        ) as conn:
            yield conn

    @contextmanager
    def api_client(self) -> Iterator["PureApiClient"]:
        """The injected client, or one built from config and closed afterwards."""
        if self._client is not None:
            yield self._client
            return

        from pure_ingest.ingestion.pure_client import PureApiClient

        with PureApiClient.from_config(self.config) as client:
            yield client

    def _persist_run(self, run: SyncRun) -> None:
        """Insert or update the ``sync_runs`` row for ``run``.

        Failures are logged, not raised: losing the audit row must not mask
        the stage's own outcome.
        """
        try:
            from pure_ingest.db.repositories.run_repo import SyncRunRepository

            with self.connection() as conn:
                repo = SyncRunRepository(conn)
                if run.run_id is None:
                    run.run_id = repo.insert_run(run)
                else:
                    repo.update_run(run)
        except Exception as exc:
            logger.error("Failed to persist SyncRun for run_slug=%s: %s", run.run_slug, exc)
