"""Tests for lazy_versions.history."""

from __future__ import annotations

import json
import multiprocessing
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor
from pathlib import Path

import pytest

from conftest import make_entry
from lazy_versions.errors import DataError, StorageIOError
from lazy_versions.history import (
    append_to_history,
    filter_by_package,
    filter_by_version,
    filter_consignments_by_metadata,
    find_by_tag,
    init_history,
    latest_entry,
    read_history,
    sort_by_timestamp,
)
from lazy_versions.locking import lock_path_for
from lazy_versions.models import HistoryEntry


class TestInitHistory:
    def test_creates_empty_array(self, tmp_path: Path) -> None:
        path = tmp_path / "history.json"
        assert init_history(path) is True
        assert json.loads(path.read_text()) == []
        assert read_history(path) == []

    def test_idempotent(self, history_path: Path) -> None:
        append_to_history(history_path, [make_entry()])
        assert init_history(history_path) is False
        assert len(read_history(history_path)) == 1


class TestAppendToHistory:
    def test_appends_in_order(self, history_path: Path) -> None:
        first = make_entry("core", "1.0.0", minutes=5)
        second = make_entry("api", "0.1.0", minutes=1)
        third = make_entry("core", "1.0.1", minutes=3)
        append_to_history(history_path, [first])
        append_to_history(history_path, [second, third])
        assert read_history(history_path) == [first, second, third]

    def test_json_layout(self, history_path: Path) -> None:
        append_to_history(history_path, [make_entry()])
        text = history_path.read_text()
        assert text.endswith("}\n]\n")
        raw = json.loads(text)
        assert raw[0]["timestamp"] == "2024-05-01T12:00:00Z"
        assert raw[0]["consignments"][0] == {
            "id": "core-1.0.0",
            "summary": "Change",
            "changeType": "patch",
        }
        assert '\n  {\n    "version": "1.0.0"' in text

    def test_empty_batch_is_noop(self, tmp_path: Path) -> None:
        path = tmp_path / "history.json"
        path.write_text("[]")
        append_to_history(path, [])
        assert path.read_bytes() == b"[]"
        assert not lock_path_for(path).exists()

    def test_missing_ledger(self, tmp_path: Path) -> None:
        with pytest.raises(StorageIOError):
            append_to_history(tmp_path / "history.json", [make_entry()])

    @pytest.mark.parametrize(
        "content", ["not json", '{"version": "1.0.0"}', '[{"version": "1.0.0"}]']
    )
    def test_corrupt_ledger_untouched(self, tmp_path: Path, content: str) -> None:
        path = tmp_path / "history.json"
        path.write_text(content)
        with pytest.raises(DataError):
            append_to_history(path, [make_entry()])
        assert path.read_text() == content
        assert [p for p in tmp_path.iterdir() if p.suffix == ".tmp"] == []

    def test_concurrent_appends_all_kept(self, history_path: Path) -> None:
        entries = [make_entry("core", f"1.0.{n}", minutes=n) for n in range(10)]
        with ThreadPoolExecutor(max_workers=10) as pool:
            for future in [
                pool.submit(append_to_history, history_path, [e]) for e in entries
            ]:
                future.result()
        stored = read_history(history_path)
        assert len(stored) == 10
        assert sorted(e.version for e in stored) == sorted(e.version for e in entries)

    def test_appends_from_separate_processes(self, history_path: Path) -> None:
        entries = [make_entry("api", f"2.0.{n}", minutes=n) for n in range(8)]
        context = multiprocessing.get_context("spawn")
        with ProcessPoolExecutor(max_workers=4, mp_context=context) as pool:
            futures = [
                pool.submit(append_to_history, history_path, [e]) for e in entries
            ]
            for future in futures:
                future.result()
        stored = read_history(history_path)
        assert sorted(e.version for e in stored) == sorted(e.version for e in entries)

    def test_logs_append(self, history_path: Path, log_messages: list[str]) -> None:
        append_to_history(history_path, [make_entry()])
        assert any(m.startswith("INFO Appended 1 entry") for m in log_messages)


class TestReadHistory:
    def test_missing(self, tmp_path: Path) -> None:
        with pytest.raises(StorageIOError, match="not found"):
            read_history(tmp_path / "history.json")

    def test_reads_external_ledger(self, tmp_path: Path) -> None:
        path = tmp_path / "history.json"
        path.write_text(
            json.dumps(
                [
                    {
                        "version": "2.0.0",
                        "package": "core",
                        "tag": "core/v2.0.0",
                        "timestamp": "2024-06-01T08:30:00.123456789Z",
                        "consignments": [
                            {
                                "id": "x",
                                "summary": "Breaking",
                                "changeType": "major",
                                "metadata": {"issue": 12},
                            }
                        ],
                    }
                ]
            )
        )
        [entry] = read_history(path)
        assert entry.version == "2.0.0"
        assert entry.consignments[0].metadata == {"issue": 12}
        assert entry.timestamp.microsecond == 123456


class TestFilters:
    def test_by_package(self, sample_entries: list[HistoryEntry]) -> None:
        assert [e.version for e in filter_by_package(sample_entries, "core")] == [
            "1.0.0",
            "1.1.0",
        ]
        assert filter_by_package(sample_entries, "missing") == []

    def test_empty_filters_return_everything(
        self, sample_entries: list[HistoryEntry]
    ) -> None:
        assert filter_by_package(sample_entries, "") == sample_entries
        assert filter_by_version(sample_entries, "") == sample_entries
        assert filter_by_package(sample_entries, "") is not sample_entries

    def test_filters_compose(self, sample_entries: list[HistoryEntry]) -> None:
        result = filter_by_version(filter_by_package(sample_entries, "core"), "1.1.0")
        assert [(e.package, e.version) for e in result] == [("core", "1.1.0")]

    def test_metadata_scalar(self, sample_entries: list[HistoryEntry]) -> None:
        [entry] = filter_consignments_by_metadata(sample_entries, "author", "alice")
        assert [c.id for c in entry.consignments] == ["c1"]

    def test_metadata_list_membership(self, sample_entries: list[HistoryEntry]) -> None:
        [entry] = filter_consignments_by_metadata(sample_entries, "labels", "api")
        assert [c.id for c in entry.consignments] == ["c1"]

    def test_metadata_bool(self, sample_entries: list[HistoryEntry]) -> None:
        [entry] = filter_consignments_by_metadata(sample_entries, "breaking", "false")
        assert [c.id for c in entry.consignments] == ["c2"]

    def test_metadata_drops_empty_entries(
        self, sample_entries: list[HistoryEntry]
    ) -> None:
        assert filter_consignments_by_metadata(sample_entries, "author", "carol") == []

    def test_metadata_does_not_mutate(self, sample_entries: list[HistoryEntry]) -> None:
        filter_consignments_by_metadata(sample_entries, "author", "alice")
        assert len(sample_entries[2].consignments) == 2


class TestSortByTimestamp:
    def test_oldest_first(self, sample_entries: list[HistoryEntry]) -> None:
        ordered = sort_by_timestamp(sample_entries)
        assert [e.version for e in ordered] == ["0.3.0", "1.0.0", "1.1.0"]

    def test_newest_first(self, sample_entries: list[HistoryEntry]) -> None:
        ordered = sort_by_timestamp(sample_entries, newest_first=True)
        assert [e.version for e in ordered] == ["1.1.0", "1.0.0", "0.3.0"]

    def test_pure(self, sample_entries: list[HistoryEntry]) -> None:
        before = list(sample_entries)
        sort_by_timestamp(sample_entries)
        assert sample_entries == before

    def test_ties_keep_ledger_order(self) -> None:
        a = make_entry("core", "1.0.0", minutes=0)
        b = make_entry("api", "1.0.0", minutes=0)
        assert sort_by_timestamp([a, b]) == [a, b]
        assert sort_by_timestamp([a, b], newest_first=True) == [a, b]


class TestLookups:
    def test_latest_entry(self, sample_entries: list[HistoryEntry]) -> None:
        assert latest_entry(sample_entries).version == "1.1.0"
        assert latest_entry(sample_entries, "api").version == "0.3.0"
        assert latest_entry(sample_entries, "missing") is None
        assert latest_entry([]) is None

    def test_latest_entry_tie_prefers_last_appended(self) -> None:
        first = make_entry("core", "1.0.0", minutes=5)
        second = make_entry("core", "1.0.1", minutes=5)
        earlier = make_entry("core", "0.9.0", minutes=0)
        assert latest_entry([first, second, earlier]) is second
        assert latest_entry([second, first]) is first

    def test_find_by_tag(self, sample_entries: list[HistoryEntry]) -> None:
        assert find_by_tag(sample_entries, "core/v1.0.0").version == "1.0.0"
        assert find_by_tag(sample_entries, "core/v9.9.9") is None
