"""Unit tests for run-level failure reporting."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch

from cypher_deadletter.observability.reporting import FailureReporter, RunStatus


class TestFailureReporter:
    def test_empty_run_succeeds(self):
        report = FailureReporter("p").report()
        assert report.pipeline_id == "p"
        assert report.status == RunStatus.SUCCEEDED

    def test_write_failures_mark_dead_letters(self):
        reporter = FailureReporter("p")
        reporter.record_submitted(2)
        reporter.record_success(target="t", rows=10)
        reporter.record_write_failure(target="t", rows=10, error="/ by zero")
        reporter.record_dead_letter(location="/dl/a.json")

        report = reporter.report()
        assert report.status == RunStatus.COMPLETED_WITH_DEAD_LETTERS
        assert report.dead_letter_locations == ["/dl/a.json"]
        assert report.summary == {
            "status": "completed_with_dead_letters",
            "batches_submitted": 2,
            "batches_written": 1,
            "batches_failed": 1,
            "dead_letters_persisted": 1,
            "persist_failures": 0,
            "worker_errors": 0,
            "snapshot_fallbacks": 0,
        }

    def test_persist_failure_is_escalated(self):
        reporter = FailureReporter("p")
        reporter.record_write_failure(target="t", rows=1, error="boom")

        with patch("cypher_deadletter.observability.reporting.logger") as mock_logger:
            reporter.record_persist_failure(target="t", error="bucket gone")

        mock_logger.error.assert_called_once_with(
            "dead_letter.persist_failed", pipeline_id="p", target="t", error="bucket gone"
        )
        assert reporter.report().status == RunStatus.DEAD_LETTERS_INCOMPLETE

    def test_incomplete_snapshots_are_counted(self):
        reporter = FailureReporter()
        reporter.record_write_failure(target="t", rows=1, error="x", snapshot_complete=False)
        assert reporter.report().snapshot_fallbacks == 1

    def test_report_is_a_copy(self):
        reporter = FailureReporter()
        reporter.record_dead_letter(location="a")
        report = reporter.report()
        report.dead_letter_locations.append("b")
        reporter.record_dead_letter(location="c")
        assert reporter.report().dead_letter_locations == ["a", "c"]

    def test_thread_safe_counters(self):
        reporter = FailureReporter()
        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(lambda _: reporter.record_success(target="t", rows=1), range(500)))
        assert reporter.report().batches_written == 500


class TestWorkerErrors:
    def test_lost_batches_make_the_run_incomplete(self):
        reporter = FailureReporter("p")
        with patch("cypher_deadletter.observability.reporting.logger") as mock_logger:
            reporter.record_worker_error(target="t", error="KeyError('boom')")

        assert mock_logger.error.call_args.args[0] == "pipeline.worker_error"
        report = reporter.report()
        assert report.worker_errors == 1
        assert report.status == RunStatus.DEAD_LETTERS_INCOMPLETE
