"""Local filesystem dead-letter sinks."""

from __future__ import annotations

import contextlib
import os
import tempfile
import threading
from pathlib import Path
from typing import BinaryIO

import structlog

from cypher_deadletter.config.models import DeadLetterConfig
from cypher_deadletter.deadletter.record import WriteFailureRecord
from cypher_deadletter.errors import PersistError
from cypher_deadletter.sinks.base import PersistResult, parse_location

logger = structlog.get_logger()

_APPEND_LOCKS: dict[Path, threading.Lock] = {}
_APPEND_LOCKS_GUARD = threading.Lock()


def _serialize(record: WriteFailureRecord, location: str) -> bytes:
    try:
        return record.to_json().encode("utf-8")
    except (TypeError, ValueError) as exc:
        msg = f"Could not serialize dead-letter record: {exc}"
        raise PersistError(msg, location=location) from exc


class LocalDirectorySink:
    """Writes each failure as its own JSON file, published by atomic rename."""

    def __init__(self, config: DeadLetterConfig, sink_id: str = "dead-letter") -> None:
        self._config = config
        self._sink_id = sink_id
        self._destination = parse_location(config.location)

    @property
    def sink_id(self) -> str:
        return self._sink_id

    @property
    def location(self) -> str:
        return self._config.location

    def persist(self, record: WriteFailureRecord) -> PersistResult:
        payload = _serialize(record, self.location)
        target = Path(self._destination.object_key())
        tmp_path: str | None = None
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=target.parent, prefix=f".{target.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "wb") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, target)
        except OSError as exc:
            if tmp_path is not None:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_path)
            msg = f"Could not write dead-letter file {target}: {exc}"
            raise PersistError(msg, location=str(target)) from exc

        logger.debug(
            "local_sink.persisted", sink_id=self.sink_id, path=str(target)
        )
        return PersistResult(
            sink_id=self.sink_id, location=str(target), size_bytes=len(payload)
        )

    def close(self) -> None:
        # Nothing is held open between calls.
        pass


class JsonLinesSink:
    """Appends one JSON line per failure to a single local file.

    Appends are serialized per path; a failed append is truncated away so
    readers never observe a partial line.
    """

    def __init__(self, config: DeadLetterConfig, sink_id: str = "dead-letter") -> None:
        self._config = config
        self._sink_id = sink_id
        self._path = Path(config.location.removeprefix("file://"))
        key = self._path.resolve()
        with _APPEND_LOCKS_GUARD:
            self._lock = _APPEND_LOCKS.setdefault(key, threading.Lock())

    @property
    def sink_id(self) -> str:
        return self._sink_id

    @property
    def location(self) -> str:
        return self._config.location

    @property
    def path(self) -> Path:
        return self._path

    def persist(self, record: WriteFailureRecord) -> PersistResult:
        line = _serialize(record, self.location) + b"\n"
        with self._lock:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                with self._path.open("a+b") as f:
                    start = f.seek(0, os.SEEK_END)
                    if start and not _ends_with_newline(f, start):
                        # a torn line from an interrupted append stays on its own line
                        line = b"\n" + line
                    try:
                        f.write(line)
                        f.flush()
                        os.fsync(f.fileno())
                    except OSError:
                        with contextlib.suppress(OSError):
                            f.truncate(start)
                        raise
            except OSError as exc:
                msg = f"Could not append dead-letter record to {self._path}: {exc}"
                raise PersistError(msg, location=str(self._path)) from exc

        logger.debug("jsonl_sink.persisted", sink_id=self.sink_id, path=str(self._path))
        return PersistResult(
            sink_id=self.sink_id, location=str(self._path), size_bytes=len(line)
        )

    def close(self) -> None:
        pass


def _ends_with_newline(f: BinaryIO, size: int) -> bool:
    f.seek(size - 1)
    return f.read(1) == b"\n"
