"""Typer CLI for running graph-write pipelines and inspecting dead letters."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import structlog
import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from cypher_deadletter.config.loader import load_pipeline_config
from cypher_deadletter.config.models import PipelineConfig
from cypher_deadletter.deadletter.reader import iter_records
from cypher_deadletter.errors import DeadLetterError, PersistError
from cypher_deadletter.observability.logconfig import configure_logging
from cypher_deadletter.observability.reporting import RunReport, RunStatus

logger = structlog.get_logger()
console = Console()
app = typer.Typer(name="cypher-deadletter", help="Graph batch writes with dead-lettering")

# exit code when dead-letter output may be incomplete
EXIT_DEAD_LETTERS_INCOMPLETE = 2


def _load(config_path: str) -> PipelineConfig:
    path = Path(config_path)
    if not path.exists():
        console.print(f"[red]Config file not found: {path}[/red]")
        raise typer.Exit(1)
    try:
        return load_pipeline_config(path)
    except (ValueError, TypeError) as exc:
        console.print(f"[red]Validation error:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from exc


def _print_report(report: RunReport) -> None:
    table = Table(title=f"Run report — {report.pipeline_id}")
    table.add_column("Metric", style="cyan")
    table.add_column("Value")
    for name, value in report.summary.items():
        table.add_row(name, str(value))
    console.print(table)
    for error in report.persist_errors:
        console.print(f"[red]dead-letter write failed:[/red] {error}")


def _run_or_abort(action: Callable[[], RunReport]) -> RunReport:
    try:
        return action()
    except PersistError as exc:
        console.print(f"[red]Run aborted, dead-letter write failed:[/red] {exc}")
        raise typer.Exit(EXIT_DEAD_LETTERS_INCOMPLETE) from exc


def _exit_for(report: RunReport) -> None:
    if report.status == RunStatus.DEAD_LETTERS_INCOMPLETE:
        console.print("[red]Dead-letter output is incomplete[/red]")
        raise typer.Exit(EXIT_DEAD_LETTERS_INCOMPLETE)
    if report.status == RunStatus.COMPLETED_WITH_DEAD_LETTERS:
        raise typer.Exit(1)


@app.callback()
def main(
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit JSON log lines"),
    log_level: str = typer.Option("INFO", "--log-level", help="Log level"),
) -> None:
    configure_logging(json=json_logs, level=log_level)


@app.command()
def validate(
    config_path: str = typer.Argument(..., help="Path to pipeline YAML"),
) -> None:
    """Validate a pipeline configuration file."""
    pipeline = _load(config_path)

    console.print(f"[green]Valid[/green] — pipeline_id={pipeline.pipeline_id}")
    console.print(f"  neo4j:       {pipeline.neo4j.uri} ({pipeline.neo4j.database})")
    console.print(f"  workers:     {pipeline.workers}")
    dl = pipeline.dead_letter
    status = "enabled" if dl.enabled else "disabled"
    console.print(f"  dead letter: {dl.location} ({dl.mode}) [{status}]")
    for s in pipeline.sources:
        console.print(f"    source {s.name} ({s.type})")
    for t in pipeline.targets:
        state = "enabled" if t.enabled else "disabled"
        console.print(f"    target {t.name} ({t.target_type}) ← {t.source} [{state}]")


@app.command()
def run(
    config_path: str = typer.Argument(..., help="Path to pipeline YAML"),
) -> None:
    """Run every enabled target against Neo4j, dead-lettering failed batches."""
    pipeline = _load(config_path)

    from cypher_deadletter.pipeline.runner import BatchWritePipeline

    console.print(f"[yellow]Starting pipeline:[/yellow] {pipeline.pipeline_id}")
    report = _run_or_abort(BatchWritePipeline(pipeline).run)
    _print_report(report)
    _exit_for(report)


@app.command()
def inspect(
    location: str = typer.Argument(..., help="Dead-letter directory or JSON-lines file"),
    show_parameters: bool = typer.Option(
        False, "--parameters", help="Print the bound parameters of each record"
    ),
) -> None:
    """List dead-letter records found at a local location."""
    table = Table(title=f"Dead letters — {location}")
    table.add_column("Origin", style="cyan")
    table.add_column("Source")
    table.add_column("Target")
    table.add_column("Rows", justify="right")
    table.add_column("Error", style="red")

    count = 0
    try:
        for origin, record in iter_records(location):
            rows = record.parameters.get("rows", ())
            table.add_row(
                origin,
                record.source_kind.value,
                record.target_kind.value,
                str(len(rows)) if isinstance(rows, tuple) else "-",
                record.error_message,
            )
            if show_parameters:
                console.print_json(data=record.parameters.to_dict())
            count += 1
    except (FileNotFoundError, DeadLetterError) as exc:
        console.print(f"[red]Error reading dead letters:[/red] {exc}")
        raise typer.Exit(1) from exc

    if not count:
        console.print("[yellow]No dead-letter records found[/yellow]")
        return
    console.print(table)


@app.command()
def replay(
    location: str = typer.Argument(..., help="Dead-letter directory or JSON-lines file"),
    config_path: str = typer.Argument(..., help="Path to pipeline YAML"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Re-run dead-lettered writes; failures are dead-lettered again."""
    pipeline = _load(config_path)
    try:
        records = [record for _, record in iter_records(location)]
    except (FileNotFoundError, DeadLetterError) as exc:
        console.print(f"[red]Error reading dead letters:[/red] {exc}")
        raise typer.Exit(1) from exc

    if not records:
        console.print("[yellow]No dead-letter records found[/yellow]")
        return
    if not yes:
        confirm = typer.confirm(f"Replay {len(records)} record(s) against Neo4j?")
        if not confirm:
            console.print("[yellow]Cancelled[/yellow]")
            raise typer.Exit(0)

    from cypher_deadletter.pipeline.runner import BatchWritePipeline

    report = _run_or_abort(lambda: BatchWritePipeline(pipeline).replay(records))
    _print_report(report)
    _exit_for(report)
