"""Unit tests for WriteExecutor failure capture and dead-letter hand-off."""

from __future__ import annotations

import threading
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from cypher_deadletter.deadletter.classifier import FailureClassifier
from cypher_deadletter.deadletter.executor import WriteExecutor
from cypher_deadletter.deadletter.kinds import SourceKind, TargetKind
from cypher_deadletter.deadletter.record import WriteFailureRecord
from cypher_deadletter.errors import PersistError
from cypher_deadletter.observability.reporting import FailureReporter, RunStatus
from cypher_deadletter.sinks.base import PersistResult

QUERY = "UNWIND $rows AS row CREATE (:DivisionByZero {result: 1/toInteger(row.value)})"


class _FakeNeo4jError(Exception):
    """Mimics neo4j.exceptions.Neo4jError, which carries the server text in .message."""

    def __init__(self, message: str) -> None:
        super().__init__(f"{{code: Neo.ClientError.Statement.ArithmeticError}} {message}")
        self.message = message


class _FakeRunner:
    def __init__(self, fail_on: set[int] | None = None, error: Exception | None = None):
        self._fail_on = fail_on
        self._error = error or _FakeNeo4jError("/ by zero")
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def run(self, query, parameters):
        index = len(self.calls)
        self.calls.append((query, dict(parameters)))
        if self._fail_on is None or index in self._fail_on:
            raise self._error


class _FakeSink:
    def __init__(self, error: Exception | None = None) -> None:
        self._error = error
        self._lock = threading.Lock()
        self.records: list[WriteFailureRecord] = []

    @property
    def sink_id(self) -> str:
        return "fake"

    @property
    def location(self) -> str:
        return "memory://fake"

    def persist(self, record: WriteFailureRecord) -> PersistResult:
        if self._error is not None:
            raise self._error
        with self._lock:
            self.records.append(record)
            n = len(self.records)
        return PersistResult(sink_id="fake", location=f"memory://fake/{n}", size_bytes=1)

    def close(self) -> None:
        pass


def _make_classifier() -> FailureClassifier:
    return FailureClassifier(
        source_kinds={"zeroes": SourceKind.TEXT_INLINE},
        target_kinds={"oopsie": TargetKind.QUERY},
    )


def _make_executor(runner=None, sink=None, **kwargs) -> WriteExecutor:
    return WriteExecutor(
        runner or _FakeRunner(),
        sink,
        _make_classifier(),
        FailureReporter("test"),
        **kwargs,
    )


def _rows(n: int = 4) -> list[dict[str, str]]:
    return [{"value": "0"} for _ in range(n)]


@pytest.mark.asyncio
class TestSuccessfulWrites:
    async def test_success_produces_no_record(self):
        sink = _FakeSink()
        executor = _make_executor(_FakeRunner(fail_on=set()), sink)
        rows = _rows()

        result = await executor.execute(rows, QUERY, {"rows": rows}, "zeroes", "oopsie")

        assert result.succeeded is True
        assert result.rows == 4
        assert sink.records == []
        assert executor.reporter.report().batches_written == 1

    async def test_runner_receives_bound_parameters(self):
        runner = _FakeRunner(fail_on=set())
        executor = _make_executor(runner, _FakeSink())
        await executor.execute(_rows(1), QUERY, {"rows": _rows(1)}, "zeroes", "oopsie")
        assert runner.calls == [(QUERY, {"rows": [{"value": "0"}]})]


@pytest.mark.asyncio
class TestFailedWrites:
    async def test_failure_becomes_one_record(self):
        sink = _FakeSink()
        executor = _make_executor(sink=sink)
        rows = _rows()

        result = await executor.execute(rows, QUERY, {"rows": rows}, "zeroes", "oopsie")

        assert result.succeeded is False
        assert result.dead_lettered is True
        assert result.dead_letter_location == "memory://fake/1"
        assert len(sink.records) == 1
        assert sink.records[0].to_json() == (
            '{"errorMessage":"/ by zero","sourceType":"TEXT_INLINE","targetType":"QUERY",'
            f'"query":"{QUERY}",'
            '"parameters":{"rows":[{"value":"0"},{"value":"0"},{"value":"0"},{"value":"0"}]}}'
        )

    async def test_driver_message_is_preferred_over_str(self):
        sink = _FakeSink()
        await _make_executor(sink=sink).execute([], QUERY, {}, "zeroes", "oopsie")
        assert sink.records[0].error_message == "/ by zero"

    async def test_plain_exception_text_is_used(self):
        sink = _FakeSink()
        runner = _FakeRunner(error=ConnectionError("connection reset"))
        await _make_executor(runner, sink).execute([], QUERY, {}, "zeroes", "oopsie")
        assert sink.records[0].error_message == "connection reset"

    async def test_empty_exception_text_falls_back_to_type_name(self):
        sink = _FakeSink()
        runner = _FakeRunner(error=TimeoutError())
        await _make_executor(runner, sink).execute([], QUERY, {}, "zeroes", "oopsie")
        assert sink.records[0].error_message == "TimeoutError"

    async def test_unknown_adapters_are_unspecified(self):
        sink = _FakeSink()
        await _make_executor(sink=sink).execute([], QUERY, {}, None, "elsewhere")
        record = sink.records[0]
        assert record.source_kind == SourceKind.UNSPECIFIED
        assert record.target_kind == TargetKind.UNSPECIFIED

    async def test_record_is_independent_of_later_mutation(self):
        sink = _FakeSink()
        rows = _rows(2)
        params = {"rows": rows}

        await _make_executor(sink=sink).execute(rows, QUERY, params, "zeroes", "oopsie")
        rows[0]["value"] = "42"
        rows.append({"value": "7"})
        params["extra"] = True

        assert sink.records[0].parameters.to_dict() == {
            "rows": [{"value": "0"}, {"value": "0"}]
        }

    async def test_unrepresentable_parameters_fall_back_to_placeholders(self):
        sink = _FakeSink()
        executor = _make_executor(sink=sink)

        with patch("cypher_deadletter.deadletter.executor.logger") as mock_logger:
            await executor.execute(
                [], QUERY, {"rows": [{"blob": object()}]}, "zeroes", "oopsie"
            )

        record = sink.records[0]
        assert record.parameters.to_dict() == {
            "rows": [{"blob": "<unrepresentable: object>"}]
        }
        assert record.parameters.placeholders == ("$.rows[0].blob",)
        events = [c.args[0] for c in mock_logger.warning.call_args_list]
        assert "write_executor.snapshot_fallback" in events
        assert executor.reporter.report().snapshot_fallbacks == 1

    async def test_k_of_n_failures_yield_k_records(self):
        sink = _FakeSink()
        runner = _FakeRunner(fail_on={1, 3, 4})
        executor = _make_executor(runner, sink)

        for i in range(6):
            rows = [{"value": str(i)}]
            await executor.execute(rows, QUERY, {"rows": rows}, "zeroes", "oopsie")

        assert [r.parameters["rows"][0]["value"] for r in sink.records] == ["1", "3", "4"]
        report = executor.reporter.report()
        assert report.batches_written == 3
        assert report.batches_failed == 3
        assert report.dead_letters_persisted == 3
        assert report.status == RunStatus.COMPLETED_WITH_DEAD_LETTERS


@pytest.mark.asyncio
class TestPersistFailures:
    async def test_persist_error_is_reported_not_raised(self):
        sink = _FakeSink(error=PersistError("bucket gone", location="gs://b"))
        executor = _make_executor(sink=sink)

        with patch("cypher_deadletter.observability.reporting.logger") as mock_logger:
            result = await executor.execute([], QUERY, {}, "zeroes", "oopsie")

        assert result.succeeded is False
        assert result.dead_lettered is False
        report = executor.reporter.report()
        assert report.persist_failures == 1
        assert report.persist_errors == ["bucket gone"]
        assert report.status == RunStatus.DEAD_LETTERS_INCOMPLETE
        mock_logger.error.assert_called_once()
        assert mock_logger.error.call_args.args[0] == "dead_letter.persist_failed"

    async def test_persist_error_is_raised_when_configured(self):
        sink = _FakeSink(error=PersistError("disk full"))
        executor = _make_executor(sink=sink, fail_on_persist_error=True)

        with pytest.raises(PersistError, match="disk full"):
            await executor.execute([], QUERY, {}, "zeroes", "oopsie")
        assert executor.reporter.report().persist_failures == 1

    async def test_unexpected_sink_exception_is_wrapped(self):
        sink = _FakeSink(error=RuntimeError("boom"))
        executor = _make_executor(sink=sink, fail_on_persist_error=True)

        with pytest.raises(PersistError, match="boom") as exc_info:
            await executor.execute([], QUERY, {}, "zeroes", "oopsie")
        assert exc_info.value.location == "memory://fake"
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    async def test_disabled_dead_lettering_still_reports(self):
        executor = _make_executor(sink=None)

        with patch("cypher_deadletter.deadletter.executor.logger") as mock_logger:
            result = await executor.execute([], QUERY, {}, "zeroes", "oopsie")

        assert result.dead_lettered is False
        assert executor.reporter.report().batches_failed == 1
        events = [c.args[0] for c in mock_logger.warning.call_args_list]
        assert "write_executor.dead_letter_disabled" in events


class TestExecutorDefaults:
    def test_defaults_are_created(self):
        executor = WriteExecutor(MagicMock(), None)
        assert isinstance(executor.reporter, FailureReporter)
