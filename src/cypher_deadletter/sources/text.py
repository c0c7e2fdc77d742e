"""Text source adapter — inline rows or a delimited text file.

Text sources stage every value as a string: the inline row ``[0]`` becomes
``{"value": "0"}``. Type conversion is left to the Cypher query
(``toInteger(row.value)``).
"""

from __future__ import annotations

import csv
import io
from collections.abc import Iterable, Iterator, Sequence
from itertools import islice
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

from cypher_deadletter.config.models import SourceAdapterConfig


def _stage(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def to_rows(
    data: Iterable[Sequence[Any]], field_names: Sequence[str]
) -> list[dict[str, str | None]]:
    """Zip each raw row with *field_names*; short rows are padded with None."""
    rows: list[dict[str, str | None]] = []
    for raw in data:
        values = list(raw)[: len(field_names)]
        values += [None] * (len(field_names) - len(values))
        rows.append({name: _stage(v) for name, v in zip(field_names, values, strict=True)})
    return rows


def _read_text(uri: str) -> str:
    parts = urlsplit(uri)
    if parts.scheme == "gs":
        from google.cloud import storage

        client = storage.Client()
        try:
            blob = client.bucket(parts.netloc).blob(parts.path.lstrip("/"))
            return blob.download_as_text()
        finally:
            client.close()
    return Path(parts.path if parts.scheme == "file" else uri).read_text(encoding="utf-8")


def read_text_source(source: SourceAdapterConfig) -> list[dict[str, str | None]]:
    """Materialize the rows of a text source."""
    if source.data is not None:
        return to_rows(source.data, source.field_names)
    assert source.uri is not None
    reader = csv.reader(io.StringIO(_read_text(source.uri)))
    field_names = source.field_names
    if not field_names:
        header = next(reader, None)
        field_names = [f.strip() for f in header] if header else []
    return to_rows(reader, field_names)


def batched(rows: Sequence[dict[str, Any]], size: int) -> Iterator[list[dict[str, Any]]]:
    """Split *rows* into consecutive batches of at most *size* rows."""
    if size < 1:
        msg = f"batch size must be >= 1, got {size}"
        raise ValueError(msg)
    it = iter(rows)
    while chunk := list(islice(it, size)):
        yield chunk
