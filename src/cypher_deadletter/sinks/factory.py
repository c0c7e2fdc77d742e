"""Sink factory — maps a dead-letter location to a concrete sink class."""

from __future__ import annotations

from cypher_deadletter.config.models import DeadLetterConfig, DeadLetterMode
from cypher_deadletter.sinks.base import DeadLetterSink, parse_location
from cypher_deadletter.sinks.gcs import GCSDeadLetterSink
from cypher_deadletter.sinks.local import JsonLinesSink, LocalDirectorySink
from cypher_deadletter.sinks.s3 import S3DeadLetterSink

_SINK_REGISTRY: dict[str, type] = {
    "file": LocalDirectorySink,
    "gs": GCSDeadLetterSink,
    "s3": S3DeadLetterSink,
}


def create_sink(config: DeadLetterConfig, sink_id: str = "dead-letter") -> DeadLetterSink:
    """Create a dead-letter sink from configuration.

    Adding a new destination = one class + one dict entry in ``_SINK_REGISTRY``.
    """
    if config.mode == DeadLetterMode.APPEND:
        return JsonLinesSink(config, sink_id)
    scheme = parse_location(config.location).scheme
    cls = _SINK_REGISTRY.get(scheme)
    if cls is None:
        msg = f"Unsupported dead-letter location scheme: {scheme}"
        raise ValueError(msg)
    return cls(config, sink_id)  # type: ignore[no-any-return]
