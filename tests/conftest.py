"""Shared fixtures: an in-memory process table and a recording log sink."""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from pathlib import Path

import pytest

from eclog import log
from eclog.context import AppContext
from eclog.errors import ExecutionError
from eclog.process_table import ProcessTable
from eclog.supervisor import LogcatSupervisor

APP_NAME = "com.example.app"
APP_USER = "u0_a1"


class RecordingSink:
    """Log sink that keeps every write."""

    def __init__(self):
        self.records: list[tuple[log.Level, str, str, BaseException | None]] = []

    def write(self, level, tag, msg, cause=None) -> int:
        self.records.append((level, tag, msg, cause))
        return len(tag) + len(msg) + 3

    def messages(self, level: log.Level | None = None) -> list[str]:
        return [m for lv, _, m, _ in self.records if level is None or lv == level]


class FakePort:
    """ProcessPort over a list of (user, pid, name) rows.

    Spawning adds a row owned by *spawn_user*; killing removes the row.
    """

    def __init__(self, rows=None, header: str = "USER     PID   PPID  NAME"):
        self.rows: list[tuple[str, str, str]] = list(rows or [])
        self.header = header
        self.output: list[str] | None = None
        self.spawn_user = APP_USER
        self.spawn_delay = 0.0
        self.fail_listing = False
        self.fail_spawn = False
        self.fail_kill = False
        self.listings: list[list[str]] = []
        self.spawned: list[list[str]] = []
        self.killed: list[str] = []
        self.reaped = 0
        self._next_pid = 5000
        self._lock = threading.Lock()

    def _lines(self) -> list[str]:
        if self.output is not None:
            return list(self.output)
        with self._lock:
            rows = list(self.rows)
        return [self.header] + [f"{user:<8} {pid:>5} 1     {name}" for user, pid, name in rows]

    @contextmanager
    def read_lines(self, argv):
        if self.fail_listing:
            raise ExecutionError("Cannot run 'ps'")
        self.listings.append(list(argv))
        try:
            yield iter(self._lines())
        finally:
            self.reaped += 1

    def spawn(self, argv) -> int:
        if self.fail_spawn:
            raise ExecutionError(f"Cannot start {argv[0]!r}")
        if self.spawn_delay:
            time.sleep(self.spawn_delay)
        with self._lock:
            pid = self._next_pid
            self._next_pid += 1
            self.spawned.append(list(argv))
            self.rows.append((self.spawn_user, str(pid), Path(argv[0]).name))
        return pid

    def kill(self, pid) -> int:
        if self.fail_kill:
            raise ExecutionError(f"Cannot kill {pid}")
        self.killed.append(pid)
        with self._lock:
            self.rows = [row for row in self.rows if row[1] != pid]
        return 0

    def capture_rows(self, name: str = "logcat") -> list[tuple[str, str, str]]:
        return [row for row in self.rows if row[2] == name]


@pytest.fixture(autouse=True)
def sink():
    """Give every test a fresh debug-mode process-wide logger."""
    recording = RecordingSink()
    previous = log.set_logger(log.SeverityLogger(debug_mode=True, sink=recording))
    yield recording
    log.set_logger(previous)


@pytest.fixture
def port() -> FakePort:
    return FakePort(rows=[
        ("root", "1", "init"),
        (APP_USER, "1234", APP_NAME),
    ])


@pytest.fixture
def table(port) -> ProcessTable:
    return ProcessTable(port, filtered_listing_argv=None)


@pytest.fixture
def app(tmp_path: Path) -> AppContext:
    return AppContext(name=APP_NAME, data_dir=tmp_path / "data")


@pytest.fixture
def supervisor(app, table) -> LogcatSupervisor:
    return LogcatSupervisor(app, table=table)
