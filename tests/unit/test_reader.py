"""Unit tests for reading dead-letter output back."""

from __future__ import annotations

from pathlib import Path

import pytest

from cypher_deadletter.config.models import DeadLetterConfig, DeadLetterMode
from cypher_deadletter.deadletter.kinds import SourceKind, TargetKind
from cypher_deadletter.deadletter.reader import iter_records
from cypher_deadletter.deadletter.record import WriteFailureRecord
from cypher_deadletter.deadletter.snapshot import snapshot
from cypher_deadletter.errors import InvalidRecordError
from cypher_deadletter.sinks.local import JsonLinesSink, LocalDirectorySink


def _make_record(value: str) -> WriteFailureRecord:
    return WriteFailureRecord(
        error_message="/ by zero",
        source_kind=SourceKind.TEXT_INLINE,
        target_kind=TargetKind.QUERY,
        query="RETURN 1",
        parameters=snapshot({"rows": [{"value": value}]}),
    )


class TestIterRecords:
    def test_directory_of_record_files(self, tmp_path: Path):
        sink = LocalDirectorySink(DeadLetterConfig(location=str(tmp_path)))
        sink.persist(_make_record("1"))
        sink.persist(_make_record("2"))
        (tmp_path / ".deadletter-x.json.abc.tmp").write_text("{partial")
        (tmp_path / ".hidden.json").write_text("{partial")

        records = [record for _, record in iter_records(tmp_path)]

        assert sorted(r.parameters["rows"][0]["value"] for r in records) == ["1", "2"]

    def test_json_lines_file(self, tmp_path: Path):
        path = tmp_path / "dl.jsonl"
        sink = JsonLinesSink(DeadLetterConfig(location=str(path), mode=DeadLetterMode.APPEND))
        sink.persist(_make_record("1"))
        with path.open("a") as f:
            f.write("\n")
        sink.persist(_make_record("2"))

        pairs = list(iter_records(f"file://{path}"))

        assert [origin for origin, _ in pairs] == [f"{path}:1", f"{path}:3"]
        assert [r.parameters["rows"][0]["value"] for _, r in pairs] == ["1", "2"]

    def test_invalid_line_names_its_origin(self, tmp_path: Path):
        path = tmp_path / "dl.jsonl"
        path.write_text(_make_record("1").to_json() + "\nnot json\n")
        with pytest.raises(InvalidRecordError, match=r"dl\.jsonl:2"):
            list(iter_records(path))

    def test_missing_location(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            list(iter_records(tmp_path / "missing"))


class TestConfiguredJsonLocation:
    def test_reads_records_written_beside_the_configured_name(self, tmp_path: Path):
        location = tmp_path / "deadletter" / "deadletter.json"
        sink = LocalDirectorySink(DeadLetterConfig(location=str(location)))
        sink.persist(_make_record("1"))
        sink.persist(_make_record("2"))
        (location.parent / "other-1.json").write_text("{not a record")

        records = [record for _, record in iter_records(location)]

        assert sorted(r.parameters["rows"][0]["value"] for r in records) == ["1", "2"]

    def test_file_url_location(self, tmp_path: Path):
        location = f"file://{tmp_path}/failed.json"
        LocalDirectorySink(DeadLetterConfig(location=location)).persist(_make_record("7"))

        (pair,) = list(iter_records(location))

        assert Path(pair[0]).name.startswith("failed-")

    def test_nothing_written_yet(self, tmp_path: Path):
        assert list(iter_records(tmp_path / "deadletter.json")) == []

    def test_missing_parent_directory(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            list(iter_records(tmp_path / "missing" / "deadletter.json"))
