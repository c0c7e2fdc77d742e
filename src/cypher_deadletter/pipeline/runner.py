"""Pipeline orchestrator — source rows → batches → workers → graph writes.

Batches are spread round-robin over a fixed set of workers, each draining
its own bounded queue in order. Failed batches are dead-lettered by the
``WriteExecutor``; they never stop the remaining batches.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Iterator, Mapping, Sequence
from contextlib import suppress
from dataclasses import dataclass
from typing import Any

import structlog

from cypher_deadletter.config.models import PipelineConfig, TargetAdapterConfig
from cypher_deadletter.deadletter.classifier import FailureClassifier
from cypher_deadletter.deadletter.executor import QueryRunner, WriteExecutor
from cypher_deadletter.deadletter.kinds import SourceKind, TargetKind
from cypher_deadletter.deadletter.record import WriteFailureRecord
from cypher_deadletter.errors import PersistError
from cypher_deadletter.observability.reporting import FailureReporter, RunReport
from cypher_deadletter.sinks.base import DeadLetterSink
from cypher_deadletter.sinks.factory import create_sink
from cypher_deadletter.sources.factory import read_rows
from cypher_deadletter.sources.text import batched

logger = structlog.get_logger()


@dataclass(frozen=True)
class BatchJob:
    """One batch write waiting in a worker queue."""

    query: str
    parameters: Mapping[str, Any]
    rows: Sequence[Any]
    source_id: str | None
    target_id: str | None


def _replay_classifier() -> FailureClassifier:
    # Replayed records keep their original tags: ids are the tag values.
    return FailureClassifier(
        source_kinds={k.value: k for k in SourceKind},
        target_kinds={k.value: k for k in TargetKind},
    )


class BatchWritePipeline:
    """Runs every enabled target of a pipeline config against the graph store."""

    def __init__(
        self,
        config: PipelineConfig,
        *,
        runner: QueryRunner | None = None,
        sink: DeadLetterSink | None = None,
        row_sources: Mapping[str, Sequence[dict[str, Any]]] | None = None,
    ) -> None:
        self._config = config
        self._runner = runner
        self._sink = sink
        self._row_sources = dict(row_sources or {})
        self._reporter = FailureReporter(config.pipeline_id)
        self._worker_queues: list[asyncio.Queue[BatchJob | None]] = []
        self._workers: list[asyncio.Task[None]] = []
        self._next_worker = 0
        self._abort: PersistError | None = None

    @property
    def reporter(self) -> FailureReporter:
        return self._reporter

    def run(self) -> RunReport:
        """Run the pipeline to completion (blocking)."""
        return asyncio.run(self.run_async())

    async def run_async(self) -> RunReport:
        classifier = FailureClassifier.from_config(self._config)
        return await self._execute(self._target_jobs(), classifier)

    def replay(self, records: Iterable[WriteFailureRecord]) -> RunReport:
        """Re-run dead-lettered writes (blocking)."""
        return asyncio.run(self.replay_async(records))

    async def replay_async(self, records: Iterable[WriteFailureRecord]) -> RunReport:
        jobs = (
            BatchJob(
                query=r.query,
                parameters=r.parameters.to_dict(),
                rows=list(r.parameters.get("rows", ())),
                source_id=r.source_kind.value,
                target_id=r.target_kind.value,
            )
            for r in records
        )
        return await self._execute(jobs, _replay_classifier())

    # -- internals -------------------------------------------------------------

    def _rows_for(self, source_name: str) -> Sequence[dict[str, Any]]:
        if source_name in self._row_sources:
            return self._row_sources[source_name]
        return read_rows(self._config.source(source_name))

    def _target_jobs(self) -> Iterator[BatchJob]:
        for target in self._config.targets:
            if not target.enabled:
                logger.info("pipeline.target_disabled", target=target.name)
                continue
            yield from self._jobs_for(target)

    def _jobs_for(self, target: TargetAdapterConfig) -> Iterator[BatchJob]:
        rows = self._rows_for(target.source)
        for batch in batched(rows, target.batch_size):
            yield BatchJob(
                query=target.query,
                parameters={"rows": batch},
                rows=batch,
                source_id=target.source,
                target_id=target.name,
            )

    async def _execute(
        self, jobs: Iterable[BatchJob], classifier: FailureClassifier
    ) -> RunReport:
        dead_letter = self._config.dead_letter
        sink = self._sink
        if sink is None and dead_letter.enabled:
            sink = create_sink(dead_letter, sink_id=f"{self._config.pipeline_id}-dlq")

        owns_runner = self._runner is None
        runner = self._runner
        try:
            if runner is None:
                from cypher_deadletter.targets.neo4j import Neo4jQueryRunner

                runner = Neo4jQueryRunner(self._config.neo4j)
                await runner.start()

            executor = WriteExecutor(
                runner,
                sink,
                classifier,
                self._reporter,
                fail_on_persist_error=dead_letter.fail_on_persist_error,
            )
            self._start_workers(executor)
            logger.info(
                "pipeline.started",
                pipeline_id=self._config.pipeline_id,
                workers=len(self._workers),
                dead_letter=sink.location if sink else None,
            )

            for job in jobs:
                if self._abort is not None:
                    break
                await self._submit(job)
            await self._drain()
        finally:
            await self._shutdown()
            if sink is not None:
                sink.close()
            if owns_runner and runner is not None:
                await runner.stop()  # type: ignore[attr-defined]

        report = self._reporter.report()
        logger.info(
            "pipeline.finished", pipeline_id=self._config.pipeline_id, **report.summary
        )
        if self._abort is not None:
            raise self._abort
        return report

    def _start_workers(self, executor: WriteExecutor) -> None:
        for worker_id in range(self._config.workers):
            queue: asyncio.Queue[BatchJob | None] = asyncio.Queue(
                maxsize=self._config.max_buffered_batches
            )
            self._worker_queues.append(queue)
            self._workers.append(
                asyncio.create_task(self._worker_loop(worker_id, queue, executor))
            )

    async def _submit(self, job: BatchJob) -> None:
        """Hand a job to the next worker (round-robin, blocks when full)."""
        queue = self._worker_queues[self._next_worker]
        self._next_worker = (self._next_worker + 1) % len(self._worker_queues)
        self._reporter.record_submitted()
        await queue.put(job)

    async def _worker_loop(
        self,
        worker_id: int,
        queue: asyncio.Queue[BatchJob | None],
        executor: WriteExecutor,
    ) -> None:
        """Per-worker loop — executes jobs strictly in submission order."""
        while True:
            job = await queue.get()
            try:
                if job is None:
                    return
                if self._abort is not None:
                    continue
                await executor.execute(
                    job.rows, job.query, job.parameters, job.source_id, job.target_id
                )
            except PersistError as exc:
                logger.error("pipeline.aborting", worker=worker_id, error=str(exc))
                self._abort = exc
            except Exception as exc:
                target = job.target_id if job is not None else None
                self._reporter.record_worker_error(target=target or "", error=repr(exc))
            finally:
                queue.task_done()

    async def _drain(self) -> None:
        for queue in self._worker_queues:
            await queue.put(None)
        await asyncio.gather(*self._workers)

    async def _shutdown(self) -> None:
        for worker in self._workers:
            if not worker.done():
                worker.cancel()
        for worker in self._workers:
            with suppress(asyncio.CancelledError):
                await worker
        self._workers.clear()
        self._worker_queues.clear()
        self._next_worker = 0
