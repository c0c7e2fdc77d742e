"""Run-level failure reporting.

Write failures and dead-letter persistence failures are counted separately:
a persistence failure means dead-letter output may be incomplete, and a run
that saw one can never be reported as a plain success.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import StrEnum

import structlog

logger = structlog.get_logger()


class RunStatus(StrEnum):
    SUCCEEDED = "succeeded"
    COMPLETED_WITH_DEAD_LETTERS = "completed_with_dead_letters"
    DEAD_LETTERS_INCOMPLETE = "dead_letters_incomplete"


@dataclass
class RunReport:
    pipeline_id: str
    batches_submitted: int = 0
    batches_written: int = 0
    batches_failed: int = 0
    dead_letters_persisted: int = 0
    persist_failures: int = 0
    worker_errors: int = 0
    snapshot_fallbacks: int = 0
    dead_letter_locations: list[str] = field(default_factory=list)
    persist_errors: list[str] = field(default_factory=list)

    @property
    def status(self) -> RunStatus:
        if self.persist_failures or self.worker_errors:
            return RunStatus.DEAD_LETTERS_INCOMPLETE
        if self.batches_failed:
            return RunStatus.COMPLETED_WITH_DEAD_LETTERS
        return RunStatus.SUCCEEDED

    @property
    def summary(self) -> dict[str, int | str]:
        return {
            "status": self.status.value,
            "batches_submitted": self.batches_submitted,
            "batches_written": self.batches_written,
            "batches_failed": self.batches_failed,
            "dead_letters_persisted": self.dead_letters_persisted,
            "persist_failures": self.persist_failures,
            "worker_errors": self.worker_errors,
            "snapshot_fallbacks": self.snapshot_fallbacks,
        }


class FailureReporter:
    """Thread-safe collector for the outcome of every batch in a run."""

    def __init__(self, pipeline_id: str = "default") -> None:
        self._lock = threading.Lock()
        self._report = RunReport(pipeline_id=pipeline_id)

    def record_submitted(self, count: int = 1) -> None:
        with self._lock:
            self._report.batches_submitted += count

    def record_success(self, *, target: str, rows: int) -> None:
        with self._lock:
            self._report.batches_written += 1
        logger.debug("reporter.batch_written", target=target, rows=rows)

    def record_write_failure(
        self, *, target: str, rows: int, error: str, snapshot_complete: bool = True
    ) -> None:
        with self._lock:
            self._report.batches_failed += 1
            if not snapshot_complete:
                self._report.snapshot_fallbacks += 1
        logger.warning(
            "reporter.write_failed",
            target=target,
            rows=rows,
            error=error,
            snapshot_complete=snapshot_complete,
        )

    def record_dead_letter(self, *, location: str) -> None:
        with self._lock:
            self._report.dead_letters_persisted += 1
            self._report.dead_letter_locations.append(location)

    def record_persist_failure(self, *, target: str, error: str) -> None:
        """Escalation signal: a failed write could not be dead-lettered."""
        with self._lock:
            self._report.persist_failures += 1
            self._report.persist_errors.append(error)
        logger.error(
            "dead_letter.persist_failed",
            pipeline_id=self._report.pipeline_id,
            target=target,
            error=error,
        )

    def record_worker_error(self, *, target: str, error: str) -> None:
        """A batch was lost to an unexpected error: neither written nor dead-lettered."""
        with self._lock:
            self._report.worker_errors += 1
        logger.error(
            "pipeline.worker_error",
            pipeline_id=self._report.pipeline_id,
            target=target,
            error=error,
        )

    def report(self) -> RunReport:
        """Return a copy of the current counters."""
        with self._lock:
            r = self._report
            return RunReport(
                pipeline_id=r.pipeline_id,
                batches_submitted=r.batches_submitted,
                batches_written=r.batches_written,
                batches_failed=r.batches_failed,
                dead_letters_persisted=r.dead_letters_persisted,
                persist_failures=r.persist_failures,
                worker_errors=r.worker_errors,
                snapshot_fallbacks=r.snapshot_fallbacks,
                dead_letter_locations=list(r.dead_letter_locations),
                persist_errors=list(r.persist_errors),
            )
