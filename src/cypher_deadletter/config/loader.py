"""Pipeline YAML loading.

A pipeline file is parsed with PyYAML, environment references are expanded,
and the result is deep-merged over the packaged ``defaults/pipeline.yaml``
before validation.

Environment references use the braced form only: ``${NEO4J_PASSWORD}`` or
``${DEAD_LETTER_LOCATION:-./deadletter}``. Cypher parameters (``$rows``,
``$`weird name```) never match, and ``$${...}`` keeps a literal ``${...}``
in a query.
"""

from __future__ import annotations

import copy
import os
import re
from functools import cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from cypher_deadletter.config.models import PipelineConfig

DEFAULTS_FILE = Path(__file__).parent / "defaults" / "pipeline.yaml"

# $${NAME} (escaped), ${NAME} or ${NAME:-default}; NAME is a shell identifier
_ENV_REF = re.compile(
    r"\$(?P<escaped>\$)?\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)"
    r"(?::-(?P<default>(?:[^}\\]|\\.)*))?\}"
)


def expand_env(value: str) -> str:
    """Expand ``${VAR}`` / ``${VAR:-default}`` references in one string."""

    def _expand(match: re.Match[str]) -> str:
        if match.group("escaped"):
            return match.group(0)[1:]
        name = match.group("name")
        env_val = os.environ.get(name)
        if env_val is not None:
            return env_val
        default = match.group("default")
        if default is not None:
            return default.replace("\\}", "}")
        msg = f"Environment variable '{name}' is not set and no default provided"
        raise ValueError(msg)

    return _ENV_REF.sub(_expand, value)


def resolve_env_vars(data: Any) -> Any:
    """Expand environment references in every string of parsed YAML data."""
    if isinstance(data, str):
        return expand_env(data)
    if isinstance(data, dict):
        return {k: resolve_env_vars(v) for k, v in data.items()}
    if isinstance(data, list):
        return [resolve_env_vars(item) for item in data]
    return data


def _read_mapping(path: Path) -> dict[str, Any]:
    try:
        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        msg = f"Failed to parse YAML in {path}"
        mark = getattr(exc, "problem_mark", None)
        if mark is not None:
            msg += f" at line {mark.line + 1}, column {mark.column + 1}"
        raise ValueError(f"{msg}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"Expected a YAML mapping at top level in {path}, got {type(data).__name__}"
        raise TypeError(msg)
    return data


def load_yaml(path: str | Path) -> dict[str, Any]:
    """Read a pipeline YAML file with environment references expanded."""
    p = Path(path)
    if not p.exists():
        msg = f"Config file not found: {p}"
        raise FileNotFoundError(msg)
    return resolve_env_vars(_read_mapping(p))  # type: ignore[no-any-return]


@cache
def _packaged_defaults() -> dict[str, Any]:
    return _read_mapping(DEFAULTS_FILE)


def with_defaults(overrides: dict[str, Any]) -> dict[str, Any]:
    """Deep-merge a pipeline mapping over the packaged defaults.

    Nested sections (``neo4j``, ``dead_letter.retry``) merge key by key;
    lists such as ``sources`` and ``targets`` replace the default outright.
    """
    return _merge(copy.deepcopy(_packaged_defaults()), overrides)


def _merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _merge(current, value)
        else:
            merged[key] = value
    return merged


def describe_validation_error(exc: ValidationError) -> str:
    """One ``field.path: message`` line per pydantic error."""
    lines = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"]) or "<pipeline>"
        lines.append(f"  {field}: {error['msg']}")
    return "\n".join(lines)


def build_pipeline_config(data: dict[str, Any], *, origin: str = "<mapping>") -> PipelineConfig:
    """Validate a pipeline mapping (merged over the defaults)."""
    try:
        return PipelineConfig.model_validate(with_defaults(data))
    except ValidationError as exc:
        msg = f"Invalid pipeline config ({origin}):\n{describe_validation_error(exc)}"
        raise ValueError(msg) from exc


def load_pipeline_config(path: str | Path) -> PipelineConfig:
    """Load, expand and validate a pipeline YAML file."""
    return build_pipeline_config(load_yaml(path), origin=str(path))
