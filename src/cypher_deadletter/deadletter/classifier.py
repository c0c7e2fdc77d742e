"""Maps source/target adapters to the tags carried by dead-letter records."""

from __future__ import annotations

from collections.abc import Mapping

from cypher_deadletter.config.models import (
    PipelineConfig,
    SourceAdapterConfig,
    SourceAdapterType,
    TargetType,
)
from cypher_deadletter.deadletter.kinds import SourceKind, TargetKind

_TARGET_KINDS: dict[TargetType, TargetKind] = {
    TargetType.NODE: TargetKind.NODE,
    TargetType.RELATIONSHIP: TargetKind.RELATIONSHIP,
    TargetType.QUERY: TargetKind.QUERY,
}


def source_kind_for(source: SourceAdapterConfig) -> SourceKind:
    if source.type == SourceAdapterType.TEXT:
        return SourceKind.TEXT_INLINE if source.data is not None else SourceKind.TEXT_GCS
    if source.type == SourceAdapterType.BIGQUERY:
        return SourceKind.BIGQUERY
    return SourceKind.UNSPECIFIED


class FailureClassifier:
    """Pure lookup from adapter ids to kind tags; never raises."""

    def __init__(
        self,
        source_kinds: Mapping[str, SourceKind] | None = None,
        target_kinds: Mapping[str, TargetKind] | None = None,
    ) -> None:
        self._source_kinds = dict(source_kinds or {})
        self._target_kinds = dict(target_kinds or {})

    @classmethod
    def from_config(cls, config: PipelineConfig) -> FailureClassifier:
        return cls(
            source_kinds={s.name: source_kind_for(s) for s in config.sources},
            target_kinds={
                t.name: _TARGET_KINDS.get(t.target_type, TargetKind.UNSPECIFIED)
                for t in config.targets
            },
        )

    def classify(
        self, source_adapter_id: str | None, target_adapter_id: str | None
    ) -> tuple[SourceKind, TargetKind]:
        return (
            self._source_kinds.get(source_adapter_id or "", SourceKind.UNSPECIFIED),
            self._target_kinds.get(target_adapter_id or "", TargetKind.UNSPECIFIED),
        )
