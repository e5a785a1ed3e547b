from __future__ import annotations

import json

import pytest

from gb_bench.results import TrialStatistics, read_statistics, write_statistics

pytestmark = pytest.mark.unit_bench


def test_json_line_uses_hyphenated_keys() -> None:
    stat = TrialStatistics(hash_match=True, size_mb=10, upload_ns=1500, download_ns=900)
    assert json.loads(stat.to_json_line()) == {
        "hash-match": True,
        "size-mb": 10,
        "upload-ns": 1500,
        "download-ns": 900,
    }


def test_statistics_file_has_one_record_per_line(tmp_path) -> None:
    stats = [
        TrialStatistics(hash_match=True, size_mb=10, upload_ns=1, download_ns=2),
        TrialStatistics(hash_match=False, size_mb=100, upload_ns=3, download_ns=4),
    ]
    path = write_statistics(tmp_path / "out" / "statistics.json", stats)

    lines = path.read_text().splitlines()
    assert len(lines) == 2
    assert json.loads(lines[1])["hash-match"] is False
    assert read_statistics(path) == stats


def test_empty_run_writes_empty_file(tmp_path) -> None:
    path = write_statistics(tmp_path / "statistics.json", [])
    assert path.read_text() == ""
    assert read_statistics(path) == []
