"""Batch write execution with failure capture and dead-letter hand-off."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import structlog

from cypher_deadletter.deadletter.classifier import FailureClassifier
from cypher_deadletter.deadletter.record import WriteFailureRecord
from cypher_deadletter.deadletter.snapshot import (
    ParameterSnapshot,
    best_effort_snapshot,
    snapshot,
)
from cypher_deadletter.errors import PersistError, SnapshotError, WriteError
from cypher_deadletter.observability.reporting import FailureReporter
from cypher_deadletter.sinks.base import DeadLetterSink

logger = structlog.get_logger()


@runtime_checkable
class QueryRunner(Protocol):
    """Runs one parameterized query against the target store."""

    async def run(self, query: str, parameters: Mapping[str, Any]) -> None:
        """Execute *query*; raise on any failure."""
        ...


@dataclass(frozen=True)
class WriteResult:
    succeeded: bool
    rows: int
    error_message: str | None = None
    dead_lettered: bool = False
    dead_letter_location: str | None = None


class WriteExecutor:
    """Executes batch writes and routes failed ones to a dead-letter sink.

    A failed write never propagates: it becomes exactly one
    ``WriteFailureRecord`` handed to the sink. A sink failure is escalated
    to the reporter and only re-raised when ``fail_on_persist_error`` is set.
    """

    def __init__(
        self,
        runner: QueryRunner,
        sink: DeadLetterSink | None,
        classifier: FailureClassifier | None = None,
        reporter: FailureReporter | None = None,
        *,
        fail_on_persist_error: bool = False,
    ) -> None:
        self._runner = runner
        self._sink = sink
        self._classifier = classifier or FailureClassifier()
        self._reporter = reporter or FailureReporter()
        self._fail_on_persist_error = fail_on_persist_error

    @property
    def reporter(self) -> FailureReporter:
        return self._reporter

    async def execute(
        self,
        batch: Sequence[Any],
        query: str,
        bound_parameters: Mapping[str, Any],
        source_adapter_id: str | None,
        target_adapter_id: str | None,
    ) -> WriteResult:
        try:
            await self._runner.run(query, bound_parameters)
        except Exception as exc:
            return await self._handle_failure(
                WriteError.from_exception(exc),
                batch,
                query,
                bound_parameters,
                source_adapter_id,
                target_adapter_id,
            )

        self._reporter.record_success(target=target_adapter_id or "", rows=len(batch))
        return WriteResult(succeeded=True, rows=len(batch))

    async def _handle_failure(
        self,
        error: WriteError,
        batch: Sequence[Any],
        query: str,
        bound_parameters: Mapping[str, Any],
        source_adapter_id: str | None,
        target_adapter_id: str | None,
    ) -> WriteResult:
        target = target_adapter_id or ""
        parameters = self._freeze(bound_parameters, target)
        source_kind, target_kind = self._classifier.classify(
            source_adapter_id, target_adapter_id
        )
        record = WriteFailureRecord(
            error_message=error.message,
            source_kind=source_kind,
            target_kind=target_kind,
            query=query,
            parameters=parameters,
        )
        logger.warning(
            "write_executor.write_failed",
            source=source_adapter_id,
            target=target_adapter_id,
            source_kind=source_kind.value,
            target_kind=target_kind.value,
            rows=len(batch),
            error=error.message,
        )
        self._reporter.record_write_failure(
            target=target,
            rows=len(batch),
            error=error.message,
            snapshot_complete=parameters.complete,
        )

        if self._sink is None:
            logger.warning(
                "write_executor.dead_letter_disabled",
                target=target_adapter_id,
                record=record.to_json(),
            )
            return WriteResult(
                succeeded=False, rows=len(batch), error_message=error.message
            )

        loop = asyncio.get_running_loop()
        try:
            result = await loop.run_in_executor(None, self._sink.persist, record)
        except Exception as exc:
            persist_error = (
                exc
                if isinstance(exc, PersistError)
                else PersistError(str(exc), location=self._sink.location)
            )
            self._reporter.record_persist_failure(target=target, error=str(persist_error))
            if self._fail_on_persist_error:
                if persist_error is exc:
                    raise
                raise persist_error from exc
            return WriteResult(
                succeeded=False, rows=len(batch), error_message=error.message
            )

        self._reporter.record_dead_letter(location=result.location)
        logger.info(
            "dead_letter.persisted",
            sink_id=result.sink_id,
            location=result.location,
            target=target_adapter_id,
        )
        return WriteResult(
            succeeded=False,
            rows=len(batch),
            error_message=error.message,
            dead_lettered=True,
            dead_letter_location=result.location,
        )

    @staticmethod
    def _freeze(bound_parameters: Mapping[str, Any], target: str) -> ParameterSnapshot:
        try:
            return snapshot(bound_parameters)
        except SnapshotError as exc:
            frozen = best_effort_snapshot(bound_parameters)
            logger.warning(
                "write_executor.snapshot_fallback",
                target=target,
                error=str(exc),
                placeholders=list(frozen.placeholders),
            )
            return frozen
