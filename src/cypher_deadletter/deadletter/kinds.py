"""Closed classification tags for failed writes."""

from __future__ import annotations

from enum import StrEnum


class SourceKind(StrEnum):
    """Where the rows of a failed batch originated."""

    TEXT_INLINE = "TEXT_INLINE"
    TEXT_GCS = "TEXT_GCS"
    BIGQUERY = "BIGQUERY"
    UNSPECIFIED = "UNSPECIFIED"

    @classmethod
    def parse(cls, value: str | None) -> SourceKind:
        """Parse a persisted tag; unknown values map to UNSPECIFIED."""
        try:
            return cls(str(value).upper())
        except ValueError:
            return cls.UNSPECIFIED


class TargetKind(StrEnum):
    """What kind of target operation was attempted."""

    NODE = "NODE"
    RELATIONSHIP = "RELATIONSHIP"
    QUERY = "QUERY"
    UNSPECIFIED = "UNSPECIFIED"

    @classmethod
    def parse(cls, value: str | None) -> TargetKind:
        """Parse a persisted tag; unknown values map to UNSPECIFIED."""
        try:
            return cls(str(value).upper())
        except ValueError:
            return cls.UNSPECIFIED
