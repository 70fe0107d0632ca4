"""
Sync run audit record.

Every stage run (product sync, transaction sync, backfills) writes one
``sync_runs`` row: which stage, how it ended, how many records it wrote, and
the configuration it ran with. ``SyncRun`` is the only model that is not
frozen, because its outcome fields are filled in as the stage finishes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

VALID_STAGES = frozenset({
    "product_sync", "transaction_sync", "backfill_event_types", "backfill_image_urls",
})
VALID_RUN_STATUSES = frozenset({"started", "success", "partial", "failed"})


class SyncRun(BaseModel):
    """Audit record for one stage execution.

    Attributes:
        run_id: Auto-assigned DB PK; ``None`` before insertion.
        run_slug: UUID4 string uniquely identifying this run.
        stage: Which stage produced this record.
        status: ``started`` → ``success`` | ``partial`` | ``failed``.
            ``partial`` means the stage finished but skipped some records.
        config_snapshot: ``AppConfig.model_dump()`` at run start.
        rows_processed: Records written by the stage.
        rows_skipped: Records the stage skipped (join misses, parse errors,
            failed writes, failed batches).
        error_message: Set when ``status == "failed"``.
        started_at: UTC start time.
        finished_at: UTC end time.
    """

    model_config = ConfigDict(frozen=False)

    run_id: Optional[int] = None
    run_slug: str
    stage: str
    status: str = "started"
    config_snapshot: dict[str, Any]
    rows_processed: int = 0
    rows_skipped: int = 0
    error_message: Optional[str] = None
    started_at: datetime
    finished_at: Optional[datetime] = None

    @field_validator("stage")
    @classmethod
    def validate_stage(cls, v: str) -> str:
        if v not in VALID_STAGES:
            raise ValueError(f"Unknown stage '{v}'. Must be one of {sorted(VALID_STAGES)}.")
        return v

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        if v not in VALID_RUN_STATUSES:
            raise ValueError(
                f"Unknown status '{v}'. Must be one of {sorted(VALID_RUN_STATUSES)}."
            )
        return v
