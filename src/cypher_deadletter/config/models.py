"""Pydantic configuration models for batch graph-write pipelines."""

from __future__ import annotations

import re
from enum import StrEnum
from typing import Any, Self

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator


class SourceAdapterType(StrEnum):
    """Supported source adapter types."""

    TEXT = "text"
    BIGQUERY = "bigquery"


class TargetType(StrEnum):
    """Kinds of write a target performs."""

    NODE = "node"
    RELATIONSHIP = "relationship"
    QUERY = "query"


class DeadLetterMode(StrEnum):
    """How records are laid out at the dead-letter location."""

    # one uniquely named object per failure
    OBJECT = "object"
    # one JSON line per failure appended to a single local file
    APPEND = "append"


class Neo4jConfig(BaseModel):
    """Connection settings for the target graph database."""

    uri: str = "neo4j://localhost:7687"
    database: str = "neo4j"
    username: str = "neo4j"
    password: SecretStr = SecretStr("neo4j")
    connection_timeout_seconds: float = Field(default=30.0, gt=0)


class RetryConfig(BaseModel):
    """Retry / backoff configuration for dead-letter storage clients."""

    max_attempts: int = Field(default=3, ge=1)
    initial_wait_seconds: float = Field(default=0.5, gt=0)
    max_wait_seconds: float = Field(default=10.0, gt=0)
    multiplier: float = Field(default=2.0, ge=1.0)
    jitter: bool = True


class DeadLetterConfig(BaseModel):
    """Where and how failed writes are persisted."""

    enabled: bool = True
    location: str = Field(default="./deadletter", min_length=1)
    mode: DeadLetterMode = DeadLetterMode.OBJECT
    # re-raise PersistError instead of only reporting it
    fail_on_persist_error: bool = False
    retry: RetryConfig = RetryConfig()

    @model_validator(mode="after")
    def check_append_is_local(self) -> Self:
        """Append mode needs a single local file."""
        if self.mode == DeadLetterMode.APPEND and "://" in self.location.removeprefix(
            "file://"
        ):
            msg = "dead_letter.mode 'append' requires a local file location"
            raise ValueError(msg)
        return self


_NAME_PATTERN = re.compile(r"^[A-Za-z_][\w.-]*$")


class SourceAdapterConfig(BaseModel):
    """A source of rows.

    - text:     inline ``data`` rows, or a ``uri`` pointing at a text file
    - bigquery: a ``query`` producing a bounded result set
    """

    name: str
    type: SourceAdapterType = SourceAdapterType.TEXT
    data: list[list[Any]] | None = None
    ordered_field_names: str | None = None
    uri: str | None = None
    query: str | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not _NAME_PATTERN.match(v):
            msg = f"Source name '{v}' must start with a letter or underscore"
            raise ValueError(msg)
        return v

    @model_validator(mode="after")
    def check_type_requirements(self) -> Self:
        if self.type == SourceAdapterType.TEXT:
            if (self.data is None) == (self.uri is None):
                msg = f"text source '{self.name}' needs exactly one of 'data' or 'uri'"
                raise ValueError(msg)
            if self.data is not None and not self.ordered_field_names:
                msg = (
                    f"text source '{self.name}' with inline data "
                    "needs 'ordered_field_names'"
                )
                raise ValueError(msg)
        elif self.type == SourceAdapterType.BIGQUERY and not self.query:
            msg = f"bigquery source '{self.name}' needs a 'query'"
            raise ValueError(msg)
        return self

    @property
    def field_names(self) -> list[str]:
        if not self.ordered_field_names:
            return []
        return [f.strip() for f in self.ordered_field_names.split(",") if f.strip()]


class TargetAdapterConfig(BaseModel):
    """A parameterized write against the graph database."""

    name: str
    target_type: TargetType = TargetType.QUERY
    source: str
    query: str = Field(min_length=1)
    batch_size: int = Field(default=5000, ge=1)
    enabled: bool = True


class PipelineConfig(BaseModel, extra="forbid"):
    """Per-run configuration — sources, targets and the dead-letter sink."""

    pipeline_id: str
    neo4j: Neo4jConfig = Neo4jConfig()
    sources: list[SourceAdapterConfig] = Field(default_factory=list)
    targets: list[TargetAdapterConfig] = Field(default_factory=list)
    dead_letter: DeadLetterConfig = DeadLetterConfig()
    workers: int = Field(default=4, ge=1)
    max_buffered_batches: int = Field(default=16, ge=1)

    @model_validator(mode="after")
    def check_references(self) -> Self:
        """Names are unique and every target reads from a known source."""
        for kind, names in (
            ("source", [s.name for s in self.sources]),
            ("target", [t.name for t in self.targets]),
        ):
            dupes = sorted({n for n in names if names.count(n) > 1})
            if dupes:
                msg = f"Duplicate {kind} names: {', '.join(dupes)}"
                raise ValueError(msg)
        known = {s.name for s in self.sources}
        for target in self.targets:
            if target.source not in known:
                msg = f"Target '{target.name}' references unknown source '{target.source}'"
                raise ValueError(msg)
        return self

    def source(self, name: str) -> SourceAdapterConfig:
        for source in self.sources:
            if source.name == name:
                return source
        msg = f"Unknown source: {name}"
        raise KeyError(msg)
