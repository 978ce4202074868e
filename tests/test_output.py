#!/usr/bin/env python3
"""
Result writer tests: split text files, CSV and DuckDB.
"""

import csv

import duckdb
import pytest

from reachability.classifier import CheckResult, FailureKind, Status
from reachability.output import (
    CsvWriter,
    DuckDBWriter,
    SplitTextWriter,
    format_console,
    open_writer,
    parse_exclude,
)
from reachability.validator import validate


RESULTS = [
    CheckResult(validate("example.com"), Status.ACTIVE, 1),
    CheckResult(validate("http://example.com/404page"), Status.INACTIVE, 1,
                reason="HTTP 404", failure=FailureKind.AUTHORITATIVE, http_status=404),
    CheckResult(validate("gone.example"), Status.INACTIVE, 1, reason="NXDOMAIN"),
    CheckResult(validate("not a valid domain!!"), Status.INVALID, 0, reason="disallowed character ' '"),
]


def test_console_lines():
    assert format_console(RESULTS[0]) == "[A] example.com"
    assert format_console(RESULTS[1]) == "[I] http://example.com/404page (HTTP 404)"
    assert format_console(RESULTS[3]).startswith("[X] not a valid domain!!")


def test_split_text_files(tmp_path):
    prefix = tmp_path / "results"
    stale = tmp_path / "results_ACTIVE.txt"
    stale.write_text("old.example\n")

    with SplitTextWriter(prefix) as writer:
        writer.write_all(RESULTS)

    assert stale.read_text().splitlines() == ["example.com"]
    assert (tmp_path / "results_INACTIVE.txt").read_text().splitlines() == [
        "http://example.com/404page", "gone.example",
    ]
    assert (tmp_path / "results_INVALID.txt").read_text().splitlines() == ["not a valid domain!!"]


def test_split_text_exclude(tmp_path):
    prefix = tmp_path / "results"
    with SplitTextWriter(prefix, exclude={Status.INACTIVE}) as writer:
        writer.write_all(RESULTS)
    assert not (tmp_path / "results_INACTIVE.txt").exists()
    assert (tmp_path / "results_ACTIVE.txt").exists()


def test_csv(tmp_path):
    path = tmp_path / "results.csv"
    with CsvWriter(path) as writer:
        writer.write_all(RESULTS)

    with open(path, newline="") as f:
        rows = list(csv.reader(f))
    assert rows[0] == CsvWriter.HEADER
    assert rows[2] == ["http://example.com/404page", "INACTIVE", "1", "HTTP 404", "404"]
    assert len(rows) == 5


def test_duckdb(tmp_path):
    path = tmp_path / "results.duckdb"
    writer = DuckDBWriter(path, batch_size=2)
    writer.write_all(RESULTS)
    assert writer.get_stats() == {"ACTIVE": 1, "INACTIVE": 2, "INVALID": 1, "total": 4}
    writer.close()

    conn = duckdb.connect(str(path), read_only=True)
    row = conn.execute(
        "SELECT normalized, reason, http_status FROM reachability_results WHERE subject = ?",
        ["http://example.com/404page"],
    ).fetchone()
    conn.close()
    assert row == ("http://example.com/404page", "HTTP 404", 404)


def test_open_writer_paths(tmp_path):
    with open_writer("csv", tmp_path / "out") as writer:
        assert writer.path == tmp_path / "out.csv"
    with open_writer("duckdb", tmp_path / "out") as writer:
        assert writer.path == tmp_path / "out.duckdb"
    with pytest.raises(ValueError):
        open_writer("xml", tmp_path / "out")


def test_parse_exclude():
    assert parse_exclude("") == set()
    assert parse_exclude("active, invalid") == {Status.ACTIVE, Status.INVALID}
    with pytest.raises(ValueError):
        parse_exclude("MAYBE")
