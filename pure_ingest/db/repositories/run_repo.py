"""
Repository for the ``sync_runs`` audit table.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Optional

from pure_ingest.db.repositories.base import BaseRepository
from pure_ingest.models.meta import SyncRun
from pure_ingest.utils.time_utils import from_db_timestamp, to_db_timestamp

logger = logging.getLogger(__name__)


class SyncRunRepository(BaseRepository):
    """Read/write access to ``sync_runs``."""

    def insert_run(self, run: SyncRun) -> int:
        """Insert a run record and return its ``run_id``."""
        cur = self.execute(
            """
            INSERT INTO sync_runs (
                run_slug, stage, status, config_snapshot, rows_processed,
                rows_skipped, error_message, started_at, finished_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                run.run_slug,
                run.stage,
                run.status,
                json.dumps(run.config_snapshot, default=str),
                run.rows_processed,
                run.rows_skipped,
                run.error_message,
                to_db_timestamp(run.started_at),
                to_db_timestamp(run.finished_at),
            ),
        )
        return int(cur.lastrowid)

    def update_run(self, run: SyncRun) -> None:
        """Write back the outcome fields of an existing run.

        Raises:
            ValueError: If ``run.run_id`` is ``None``.
        """
        if run.run_id is None:
            raise ValueError("Cannot update SyncRun without a run_id.")
        self.execute(
            """
            UPDATE sync_runs SET
                status         = ?,
                rows_processed = ?,
                rows_skipped   = ?,
                error_message  = ?,
                finished_at    = ?
            WHERE run_id = ?;
            """,
            (
                run.status,
                run.rows_processed,
                run.rows_skipped,
                run.error_message,
                to_db_timestamp(run.finished_at),
                run.run_id,
            ),
        )

    def get_run_by_slug(self, run_slug: str) -> Optional[SyncRun]:
        row = self.fetchone("SELECT * FROM sync_runs WHERE run_slug = ?;", (run_slug,))
        return _row_to_run(row) if row else None

    def get_recent_runs(self, stage: Optional[str] = None, limit: int = 20) -> list[SyncRun]:
        """Most recent runs first, optionally filtered to one stage."""
        if stage:
            rows = self.fetchall(
                "SELECT * FROM sync_runs WHERE stage = ? ORDER BY run_id DESC LIMIT ?;",
                (stage, limit),
            )
        else:
            rows = self.fetchall(
                "SELECT * FROM sync_runs ORDER BY run_id DESC LIMIT ?;", (limit,)
            )
        return [_row_to_run(r) for r in rows]


def _row_to_run(row: sqlite3.Row) -> SyncRun:
    return SyncRun(
        run_id=row["run_id"],
        run_slug=row["run_slug"],
        stage=row["stage"],
        status=row["status"],
        config_snapshot=json.loads(row["config_snapshot"]),
        rows_processed=row["rows_processed"],
        rows_skipped=row["rows_skipped"],
        error_message=row["error_message"],
        started_at=from_db_timestamp(row["started_at"]),
        finished_at=from_db_timestamp(row["finished_at"]),
    )
