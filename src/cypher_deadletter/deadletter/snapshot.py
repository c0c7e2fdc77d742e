"""Immutable, deep-copied capture of bound query parameters.

A snapshot is taken at the moment a write fails. Every container level is
rebuilt with fresh storage, so later mutation of the caller's mapping (or of
anything nested inside it) can never change what ends up in the dead-letter
record.
"""

from __future__ import annotations

import json
import math
from collections.abc import Iterator, Mapping
from datetime import date, datetime, time
from decimal import Decimal
from types import MappingProxyType
from typing import Any
from uuid import UUID

from cypher_deadletter.errors import SnapshotError

PLACEHOLDER_TEMPLATE = "<unrepresentable: {}>"


class ParameterSnapshot(Mapping[str, Any]):
    """Read-only parameter mapping, structurally independent of its origin.

    Nested mappings are exposed as read-only views and sequences as tuples.
    Use :meth:`to_dict` to obtain a plain, JSON-ready copy.
    """

    __slots__ = ("_data", "_placeholders")

    def __init__(
        self,
        data: Mapping[str, Any],
        placeholders: tuple[str, ...] = (),
    ) -> None:
        # Only the builders below hand in already-frozen data.
        self._data = data
        self._placeholders = placeholders

    @property
    def placeholders(self) -> tuple[str, ...]:
        """JSON paths whose values were replaced by a placeholder."""
        return self._placeholders

    @property
    def complete(self) -> bool:
        return not self._placeholders

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def to_dict(self) -> dict[str, Any]:
        """Return a fresh plain ``dict``/``list`` tree of the snapshot content."""
        return _thaw(self._data)

    def canonical_json(self) -> str:
        """Key-sorted compact JSON; equality and hashing are defined on it."""
        return _canonical(self.to_dict())

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ParameterSnapshot):
            return self.canonical_json() == other.canonical_json()
        if isinstance(other, Mapping):
            try:
                return self.canonical_json() == _canonical(dict(other))
            except (TypeError, ValueError):
                return False
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.canonical_json())

    def __repr__(self) -> str:
        return f"ParameterSnapshot({self.to_dict()!r})"


def snapshot(parameters: Mapping[str, Any]) -> ParameterSnapshot:
    """Deep-copy *parameters* into an immutable snapshot.

    Raises :class:`SnapshotError` when a value is not JSON-representable or
    the structure is cyclic.
    """
    return _Builder(lenient=False).build(parameters)


def best_effort_snapshot(parameters: Any) -> ParameterSnapshot:
    """Like :func:`snapshot`, but never raises.

    Unrepresentable values are replaced by ``"<unrepresentable: TypeName>"``
    and their paths are listed in :attr:`ParameterSnapshot.placeholders`.
    """
    return _Builder(lenient=True).build(parameters)


def placeholder_for(value: Any) -> str:
    return PLACEHOLDER_TEMPLATE.format(type(value).__name__)


class _Builder:
    def __init__(self, *, lenient: bool) -> None:
        self._lenient = lenient
        self._placeholders: list[str] = []
        self._active: set[int] = set()

    def build(self, parameters: Any) -> ParameterSnapshot:
        if not isinstance(parameters, Mapping):
            frozen = self._reject(
                parameters, "$", f"expected a mapping, got {type(parameters).__name__}"
            )
            return ParameterSnapshot(
                MappingProxyType({"$": frozen}), tuple(self._placeholders)
            )
        try:
            data = self._copy(parameters, "$")
        except RecursionError as exc:
            if not self._lenient:
                msg = "parameters are nested too deeply"
                raise SnapshotError(msg) from exc
            self._placeholders = ["$"]
            data = MappingProxyType({"$": PLACEHOLDER_TEMPLATE.format("nesting")})
        return ParameterSnapshot(data, tuple(self._placeholders))

    def _reject(self, value: Any, path: str, reason: str, label: str | None = None) -> str:
        if not self._lenient:
            raise SnapshotError(reason, path=path)
        self._placeholders.append(path)
        return PLACEHOLDER_TEMPLATE.format(label) if label else placeholder_for(value)

    def _copy(self, value: Any, path: str) -> Any:
        if value is None or isinstance(value, (str, bool, int)):
            return value
        if isinstance(value, float):
            if math.isfinite(value):
                return value
            return self._reject(value, path, f"non-finite float {value!r}")
        if isinstance(value, (datetime, date, time)):
            return value.isoformat()
        if isinstance(value, (Decimal, UUID)):
            return str(value)
        if isinstance(value, Mapping):
            return self._copy_mapping(value, path)
        if isinstance(value, (list, tuple)):
            return self._copy_sequence(value, path)
        return self._reject(value, path, f"unsupported type {type(value).__name__}")

    def _copy_mapping(self, value: Mapping[Any, Any], path: str) -> Any:
        marker = id(value)
        if marker in self._active:
            return self._reject(value, path, "cyclic reference", "cycle")
        self._active.add(marker)
        try:
            copied: dict[str, Any] = {}
            str_keys = {k for k in value if isinstance(k, str)}
            for key, item in value.items():
                if not isinstance(key, str):
                    self._reject(key, f"{path}.{key!r}", f"non-string key {key!r}")
                    key = _free_key(key, str_keys, copied)
                copied[key] = self._copy(item, f"{path}.{key}")
        finally:
            self._active.discard(marker)
        return MappingProxyType(copied)

    def _copy_sequence(self, value: list[Any] | tuple[Any, ...], path: str) -> Any:
        marker = id(value)
        if marker in self._active:
            return self._reject(value, path, "cyclic reference", "cycle")
        self._active.add(marker)
        try:
            return tuple(self._copy(item, f"{path}[{i}]") for i, item in enumerate(value))
        finally:
            self._active.discard(marker)


def _free_key(key: Any, str_keys: set[str], copied: dict[str, Any]) -> str:
    """Stringify a non-string key without clobbering a key already present."""
    text = str(key)
    candidate = text
    n = 1
    while candidate in str_keys or candidate in copied:
        suffix = type(key).__name__ if n == 1 else f"{type(key).__name__} {n}"
        candidate = f"{text} ({suffix})"
        n += 1
    return candidate


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


def _canonical(value: Any) -> str:
    # 1, 1.0 and True serialize differently, so they never compare equal
    return json.dumps(value, sort_keys=True, separators=(",", ":"), allow_nan=False)
