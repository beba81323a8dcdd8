"""
Run summaries for collection_logs.

Every job writes exactly one summary row, even when it aborts early, so
operators can tell "ran with some skips" (partial) from "did not run"
(error). Writing the summary never fails the job.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import asyncpg

logger = logging.getLogger(__name__)


class RunStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    ERROR = "error"


_INSERT_RUN_SQL = """
INSERT INTO collection_logs (
    job, provider, processed, succeeded, duplicates, errors,
    status, duration_ms, error_message
)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
"""


@dataclass
class RunSummary:
    """Aggregate counts for one job invocation."""
    job: str
    provider: Optional[str] = None
    processed: int = 0
    succeeded: int = 0
    duplicates: int = 0
    errors: int = 0
    # Stopped before the queue was drained (e.g. quota spent)
    stopped_early: bool = False
    # Could not even read the work queue
    aborted: bool = False
    error_message: Optional[str] = None
    details: dict = field(default_factory=dict)
    started_at: float = field(default_factory=time.monotonic)
    duration_ms: int = 0

    @property
    def status(self) -> RunStatus:
        if self.aborted:
            return RunStatus.ERROR
        if self.errors > 0 or self.stopped_early:
            return RunStatus.PARTIAL
        return RunStatus.SUCCESS

    def finish(self) -> "RunSummary":
        self.duration_ms = int((time.monotonic() - self.started_at) * 1000)
        return self

    def as_dict(self) -> dict:
        return {
            "job": self.job,
            "provider": self.provider,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "duplicates": self.duplicates,
            "errors": self.errors,
            "status": self.status.value,
            "duration_ms": self.duration_ms,
            **self.details,
        }


async def record_run(pool: asyncpg.Pool, summary: RunSummary) -> bool:
    """Insert the summary row. Returns False (after logging) if the insert fails."""
    if not summary.duration_ms:
        summary.finish()
    try:
        async with pool.acquire() as conn:
            await conn.execute(
                _INSERT_RUN_SQL,
                summary.job,
                summary.provider,
                summary.processed,
                summary.succeeded,
                summary.duplicates,
                summary.errors,
                summary.status.value,
                summary.duration_ms,
                summary.error_message,
            )
    except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError):
        logger.exception("Failed to write collection_logs row for %s", summary.job)
        return False

    logger.info(
        "%s finished: status=%s processed=%d succeeded=%d duplicates=%d errors=%d (%dms)",
        summary.job,
        summary.status.value,
        summary.processed,
        summary.succeeded,
        summary.duplicates,
        summary.errors,
        summary.duration_ms,
    )
    return True
