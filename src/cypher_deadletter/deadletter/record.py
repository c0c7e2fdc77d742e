"""WriteFailureRecord — the self-contained description of one failed write."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from cypher_deadletter.deadletter.kinds import SourceKind, TargetKind
from cypher_deadletter.deadletter.snapshot import ParameterSnapshot, snapshot
from cypher_deadletter.errors import InvalidRecordError, SnapshotError

RECORD_KEYS = ("errorMessage", "sourceType", "targetType", "query", "parameters")


@dataclass(frozen=True, slots=True)
class WriteFailureRecord:
    """Immutable value object built at the instant a batch write fails."""

    error_message: str
    source_kind: SourceKind
    target_kind: TargetKind
    query: str
    parameters: ParameterSnapshot

    def to_dict(self) -> dict[str, Any]:
        return {
            "errorMessage": self.error_message,
            "sourceType": self.source_kind.value,
            "targetType": self.target_kind.value,
            "query": self.query,
            "parameters": self.parameters.to_dict(),
        }

    def to_json(self) -> str:
        """Serialize as one compact JSON object (no trailing newline)."""
        return json.dumps(
            self.to_dict(),
            ensure_ascii=False,
            allow_nan=False,
            separators=(",", ":"),
        )

    @classmethod
    def from_dict(cls, data: Any) -> WriteFailureRecord:
        if not isinstance(data, dict):
            msg = f"Expected a JSON object, got {type(data).__name__}"
            raise InvalidRecordError(msg)
        missing = [key for key in RECORD_KEYS if key not in data]
        if missing:
            msg = f"Dead-letter record is missing keys: {', '.join(missing)}"
            raise InvalidRecordError(msg)
        try:
            parameters = snapshot(data["parameters"])
        except SnapshotError as exc:
            msg = f"Dead-letter record has invalid parameters: {exc}"
            raise InvalidRecordError(msg) from exc
        return cls(
            error_message=str(data["errorMessage"]),
            source_kind=SourceKind.parse(data["sourceType"]),
            target_kind=TargetKind.parse(data["targetType"]),
            query=str(data["query"]),
            parameters=parameters,
        )

    @classmethod
    def from_json(cls, text: str | bytes) -> WriteFailureRecord:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            msg = f"Dead-letter record is not valid JSON: {exc}"
            raise InvalidRecordError(msg) from exc
        return cls.from_dict(data)
