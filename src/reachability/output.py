#!/usr/bin/env python3
"""
Result writers.

Formats:
- text:   <prefix>_ACTIVE.txt / <prefix>_INACTIVE.txt / <prefix>_INVALID.txt,
          one subject per line
- csv:    <prefix>.csv with subject, status, attempts, reason, http_status
- duckdb: table reachability_results in <prefix>.duckdb

Writers are synchronous and called once per result from the consuming loop.
"""

import csv
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

import duckdb

from .classifier import CheckResult, Status


FORMATS = ("text", "csv", "duckdb")

STATUS_ICONS = {
    Status.ACTIVE: "[A]",
    Status.INACTIVE: "[I]",
    Status.INVALID: "[X]",
}


def format_console(result: CheckResult) -> str:
    """Console line, e.g. '[I] example.org (HTTP 404)'."""
    icon = STATUS_ICONS.get(result.status, "[?]")
    reason = f" ({result.reason})" if result.reason else ""
    return f"{icon} {result.raw}{reason}"


class ResultWriter:
    """Base writer; also usable as a context manager."""

    def write(self, result: CheckResult):
        raise NotImplementedError

    def write_all(self, results: Iterable[CheckResult]):
        for result in results:
            self.write(result)

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class SplitTextWriter(ResultWriter):
    """One file per status; stale files from a previous run are removed."""

    def __init__(self, prefix: Path, exclude: Iterable[Status] = ()):
        self.prefix = Path(prefix)
        self.exclude = set(exclude)
        self._files = {}
        for status in Status:
            path = self.path_for(status)
            if path.exists():
                path.unlink()

    def path_for(self, status: Status) -> Path:
        return self.prefix.with_name(f"{self.prefix.name}_{status.value}.txt")

    def write(self, result: CheckResult):
        if result.status in self.exclude:
            return
        f = self._files.get(result.status)
        if f is None:
            f = self._files[result.status] = open(self.path_for(result.status), "a", encoding="utf-8")
        f.write(f"{result.raw.strip()}\n")

    def close(self):
        for f in self._files.values():
            f.close()
        self._files.clear()


class CsvWriter(ResultWriter):
    HEADER = ["subject", "status", "attempts", "reason", "http_status"]

    def __init__(self, path: Path, exclude: Iterable[Status] = ()):
        self.path = Path(path)
        self.exclude = set(exclude)
        self._file = open(self.path, "w", newline="", encoding="utf-8")
        self._writer = csv.writer(self._file)
        self._writer.writerow(self.HEADER)

    def write(self, result: CheckResult):
        if result.status in self.exclude:
            return
        self._writer.writerow([
            result.raw.strip(),
            result.status.value,
            result.attempts,
            result.reason or "",
            result.http_status if result.http_status is not None else "",
        ])

    def close(self):
        if not self._file.closed:
            self._file.close()


class DuckDBWriter(ResultWriter):
    """Writes results to DuckDB in batches."""

    def __init__(self, path: Path, exclude: Iterable[Status] = (), batch_size: int = 10000):
        self.path = Path(path)
        self.exclude = set(exclude)
        self.batch_size = batch_size
        self._batch: list[tuple] = []
        self._conn = None  # Lazy
        self._init_db()

    def _get_conn(self):
        """Get or create DuckDB connection."""
        if self._conn is None:
            self._conn = duckdb.connect(str(self.path))
        return self._conn

    def _init_db(self):
        """Create the results table."""
        conn = self._get_conn()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS reachability_results (
                subject VARCHAR,
                normalized VARCHAR,
                status VARCHAR NOT NULL,
                attempts INTEGER NOT NULL,
                reason VARCHAR,
                http_status INTEGER,
                checked_at TIMESTAMP
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_results_status ON reachability_results(status)
        """)

    def write(self, result: CheckResult):
        if result.status in self.exclude:
            return
        self._batch.append((
            result.raw.strip(),
            result.subject.normalized,
            result.status.value,
            result.attempts,
            result.reason,
            result.http_status,
            datetime.now(),
        ))
        if len(self._batch) >= self.batch_size:
            self.flush()

    def flush(self):
        """Save pending rows."""
        if not self._batch:
            return
        self._get_conn().executemany(
            """
            INSERT INTO reachability_results
                (subject, normalized, status, attempts, reason, http_status, checked_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            self._batch
        )
        self._batch.clear()

    def get_stats(self) -> dict:
        """Count stored results by status."""
        self.flush()
        stats = {}
        for row in self._get_conn().execute(
            "SELECT status, COUNT(*) FROM reachability_results GROUP BY status"
        ).fetchall():
            stats[row[0]] = row[1]
        stats['total'] = sum(stats.values())
        return stats

    def close(self):
        """Flush and close the connection."""
        if self._conn is not None:
            self.flush()
            self._conn.close()
            self._conn = None


def open_writer(fmt: str, prefix: Path, exclude: Iterable[Status] = ()) -> ResultWriter:
    prefix = Path(prefix)
    if fmt == "text":
        return SplitTextWriter(prefix, exclude)
    if fmt == "csv":
        return CsvWriter(prefix.with_name(f"{prefix.name}.csv"), exclude)
    if fmt == "duckdb":
        return DuckDBWriter(prefix.with_name(f"{prefix.name}.duckdb"), exclude)
    raise ValueError(f"unknown output format {fmt!r}; expected one of {', '.join(FORMATS)}")


def parse_exclude(value: Optional[str]) -> set[Status]:
    """Parse 'ACTIVE,INVALID' into statuses; empty means nothing excluded."""
    if not value:
        return set()
    statuses = set()
    for part in value.split(","):
        part = part.strip().upper()
        if part:
            try:
                statuses.add(Status(part))
            except ValueError:
                raise ValueError(f"unknown status to exclude: {part!r}") from None
    return statuses
