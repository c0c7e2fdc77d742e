"""Read persisted dead-letter output back as records."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

from cypher_deadletter.deadletter.record import WriteFailureRecord
from cypher_deadletter.errors import InvalidRecordError
from cypher_deadletter.sinks.base import parse_location


def iter_records(location: str | Path) -> Iterator[tuple[str, WriteFailureRecord]]:
    """Yield ``(origin, record)`` pairs from local dead-letter output.

    *location* is what the pipeline was configured with, or a path below it:

    - an existing directory: every ``*.json`` record file under it
    - an existing file: read as JSON lines (append mode, or a single record)
    - a ``.../<stem>.json`` location that was never written as a file: the
      ``<stem>-*.json`` record files the object sink placed beside it
    """
    text = str(location)
    path = Path(text.removeprefix("file://"))

    if path.is_dir():
        yield from _iter_files(sorted(path.rglob("*.json")))
        return
    if path.is_file():
        yield from _iter_lines(path)
        return

    destination = parse_location(text)
    directory = Path(destination.prefix or ".")
    if destination.scheme != "file" or not text.endswith(".json") or not directory.is_dir():
        msg = f"Dead-letter location not found: {path}"
        raise FileNotFoundError(msg)
    yield from _iter_files(sorted(directory.glob(f"{destination.stem}-*.json")))


def _iter_files(files: list[Path]) -> Iterator[tuple[str, WriteFailureRecord]]:
    for file in files:
        # in-flight temp files of the directory sink start with a dot
        if file.name.startswith("."):
            continue
        yield str(file), _parse(file.read_text(encoding="utf-8"), str(file))


def _iter_lines(path: Path) -> Iterator[tuple[str, WriteFailureRecord]]:
    with path.open(encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            if not line.strip():
                continue
            origin = f"{path}:{lineno}"
            yield origin, _parse(line, origin)


def _parse(text: str, origin: str) -> WriteFailureRecord:
    try:
        return WriteFailureRecord.from_json(text)
    except InvalidRecordError as exc:
        msg = f"{origin}: {exc}"
        raise InvalidRecordError(msg) from exc
