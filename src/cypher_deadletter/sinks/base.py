"""Dead-letter sink protocol and destination addressing.

New destination types implement :class:`DeadLetterSink` to plug into the
write executor without modifying core code.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol, TypeVar, runtime_checkable
from urllib.parse import urlsplit

from tenacity import retry, stop_after_attempt, wait_exponential_jitter

from cypher_deadletter.config.models import RetryConfig
from cypher_deadletter.deadletter.record import WriteFailureRecord

DEFAULT_STEM = "deadletter"

_F = TypeVar("_F", bound=Callable[..., Any])


@dataclass(frozen=True)
class PersistResult:
    """Outcome of one successful ``persist`` call."""

    sink_id: str
    location: str
    size_bytes: int


@runtime_checkable
class DeadLetterSink(Protocol):
    """Protocol that every dead-letter destination must satisfy.

    ``persist`` must be safe to call from several worker threads at once and
    must either make one complete record visible or raise ``PersistError``.
    """

    @property
    def sink_id(self) -> str:
        """Unique identifier for this sink instance."""
        ...

    @property
    def location(self) -> str:
        """The configured destination this sink writes under."""
        ...

    def persist(self, record: WriteFailureRecord) -> PersistResult:
        """Durably write one serialized failure record."""
        ...

    def close(self) -> None:
        """Release client resources."""
        ...


@dataclass(frozen=True)
class Destination:
    """A dead-letter location split into scheme, bucket, key prefix and stem.

    ``gs://bucket/runs/42/deadletter.json`` becomes bucket ``bucket``, prefix
    ``runs/42`` and stem ``deadletter``; a location without a ``.json`` name is
    treated as a directory.
    """

    scheme: str
    bucket: str
    prefix: str
    stem: str

    def object_key(self) -> str:
        stamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%S%fZ")
        name = f"{self.stem}-{stamp}-{uuid.uuid4().hex}.json"
        return f"{self.prefix.rstrip('/')}/{name}" if self.prefix else name

    def url_for(self, key: str) -> str:
        if self.scheme == "file":
            return key
        return f"{self.scheme}://{self.bucket}/{key}"


def parse_location(location: str) -> Destination:
    parts = urlsplit(location)
    scheme = parts.scheme or "file"
    if scheme == "file":
        bucket = ""
        path = parts.path if parts.scheme else location
    else:
        bucket = parts.netloc
        path = parts.path.lstrip("/")
    path = path.rstrip("/") or path
    head, sep, tail = path.rpartition("/")
    if tail.endswith(".json"):
        if sep and not head:
            head = "/"
        return Destination(scheme, bucket, head, tail[:-5])
    return Destination(scheme, bucket, path, DEFAULT_STEM)


def storage_retry(config: RetryConfig) -> Callable[[_F], _F]:
    """Retry decorator for storage-client calls, built from ``RetryConfig``."""
    return retry(  # type: ignore[return-value]
        stop=stop_after_attempt(config.max_attempts),
        wait=wait_exponential_jitter(
            initial=config.initial_wait_seconds,
            max=config.max_wait_seconds,
            exp_base=config.multiplier,
            jitter=1 if config.jitter else 0,
        ),
        reraise=True,
    )
