"""Row source factory — maps a source adapter config to its rows."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from cypher_deadletter.config.models import SourceAdapterConfig, SourceAdapterType
from cypher_deadletter.sources.text import read_text_source

RowReader = Callable[[SourceAdapterConfig], list[dict[str, Any]]]

_READER_REGISTRY: dict[SourceAdapterType, RowReader] = {
    SourceAdapterType.TEXT: read_text_source,
}


def read_rows(source: SourceAdapterConfig) -> list[dict[str, Any]]:
    """Read all rows of *source*.

    BigQuery sources have no built-in reader; pass their rows to the
    pipeline through ``row_sources`` instead.
    """
    reader = _READER_REGISTRY.get(source.type)
    if reader is None:
        msg = f"No built-in row reader for source type: {source.type}"
        raise ValueError(msg)
    return reader(source)
