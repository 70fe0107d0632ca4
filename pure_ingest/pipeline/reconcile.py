"""
Per-record reconciliation writes with an accumulating report.

Sync batches are not transactional: each record is written and
committed on its own, so one bad record (unknown variant, constraint
violation, locked database) costs only that record. The failure is rolled
back, logged, and returned in the ``BatchReport`` for the caller to count.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from pure_ingest.errors import IngestionError

logger = logging.getLogger(__name__)

R = TypeVar("R")


@dataclass(frozen=True)
class SkippedRecord:
    """A record that was not written, and why."""

    key: str
    reason: str


@dataclass
class BatchReport:
    """Outcome of a sequence of per-record writes.

    ``succeeded`` counts statements that executed without error; an upsert
    that rewrote identical values still counts. Treat it as a progress
    metric, not an exact insert count.
    """

    succeeded: int = 0
    skipped: list[SkippedRecord] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return self.succeeded + len(self.skipped)

    def skip(self, key: str, reason: str) -> None:
        self.skipped.append(SkippedRecord(key, reason))

    def merge(self, other: "BatchReport") -> None:
        self.succeeded += other.succeeded
        self.skipped.extend(other.skipped)


def upsert_each(
    conn: sqlite3.Connection,
    records: Iterable[R],
    write: Callable[[R], Any],
    key: Callable[[R], str],
) -> BatchReport:
    """Apply ``write`` to each record, committing after every success.

    Args:
        conn: Connection the repository behind ``write`` uses.
        records: Records to write, in order.
        write: Repository call for one record (e.g. ``repo.upsert``).
        key: Formats a record's natural key for the report and logs.

    Returns:
        ``BatchReport`` of succeeded and skipped records.
    """
    report = BatchReport()
    for record in records:
        try:
            write(record)
        except (sqlite3.Error, IngestionError) as exc:
            conn.rollback()
            logger.error("Write failed for %s: %s", key(record), exc)
            report.skip(key(record), str(exc))
            continue
        conn.commit()
        report.succeeded += 1
    return report
