"""Find processes by parsing the output of ``ps``.

The header line decides which column is which, so the same code copes with
different ``ps`` flavours. All filtering happens here rather than through
grep, which is not available everywhere. Matching is by exact equality:
a pid or argument that merely contains the query never counts.
"""

from __future__ import annotations

import re
import sys
from dataclasses import dataclass
from typing import Iterable, Sequence

from eclog import log
from eclog.errors import ParseError
from eclog.process import ProcessPort, SubprocessPort

LOG_TAG = "ProcessTable"

# A run of whitespace, optionally swallowing a one-letter state column
# (e.g. "S" or "R" between WCHAN and NAME on Android).
COLUMN_SEPARATOR = re.compile(r"(?:\s+[A-Z]?\s+|\s+)")

USER_COLUMNS = ("USER", "UID")
PID_COLUMNS = ("PID",)
NAME_COLUMNS = ("NAME", "COMMAND", "CMD", "COMM")

DEFAULT_LISTING = ("ps", "-A", "-o", "user,pid,comm")
# procps can narrow the listing by command name; other ps flavours can't.
DEFAULT_FILTERED_LISTING: tuple[str, ...] | None = (
    ("ps", "-C", "{name}", "-o", "user,pid,comm")
    if sys.platform.startswith("linux")
    else None
)


@dataclass(frozen=True)
class ProcessRecord:
    """One row of the process listing. Missing columns are None."""

    pid: str | None
    user: str | None
    name: str | None


def split_columns(line: str) -> list[str]:
    line = line.strip()
    if not line:
        return []
    return COLUMN_SEPARATOR.split(line)


def _find_column(header: dict[str, int], candidates: Sequence[str]) -> int | None:
    for name in candidates:
        if name in header:
            return header[name]
    return None


def parse_listing(lines: Iterable[str]) -> list[ProcessRecord]:
    """Parse listing output into records.

    Raises ParseError when the header is missing, has no user column, or has
    neither a pid nor a name column.
    """
    it = iter(lines)
    header_line = next(it, None)
    if header_line is None or not header_line.strip():
        raise ParseError("Process listing produced no header line.")
    log.trace(header_line, tag=LOG_TAG)

    header = {}
    for index, token in enumerate(split_columns(header_line)):
        header.setdefault(token.upper(), index)

    user_col = _find_column(header, USER_COLUMNS)
    pid_col = _find_column(header, PID_COLUMNS)
    name_col = _find_column(header, NAME_COLUMNS)
    if user_col is None or (pid_col is None and name_col is None):
        raise ParseError(f"Some column cannot be found from output: {header_line!r}")
    if pid_col is None:
        log.warn(
            f"No PID column in {header_line!r}: processes can be found but not stopped",
            tag=LOG_TAG,
        )

    needed = max(c for c in (user_col, pid_col, name_col) if c is not None)
    records: list[ProcessRecord] = []
    for line in it:
        log.trace(line, tag=LOG_TAG)
        columns = split_columns(line)
        if len(columns) <= needed:
            continue
        records.append(ProcessRecord(
            pid=columns[pid_col] if pid_col is not None else None,
            user=columns[user_col],
            name=columns[name_col] if name_col is not None else None,
        ))
    return records


class ProcessTable:
    """Query the live process table through a ProcessPort."""

    def __init__(
        self,
        port: ProcessPort | None = None,
        listing_argv: Sequence[str] = DEFAULT_LISTING,
        filtered_listing_argv: Sequence[str] | None = DEFAULT_FILTERED_LISTING,
    ):
        self.port: ProcessPort = port if port is not None else SubprocessPort()
        self.listing_argv = list(listing_argv)
        self.filtered_listing_argv = (
            list(filtered_listing_argv) if filtered_listing_argv else None
        )

    def _argv_for(self, filter_command: str | None) -> list[str]:
        if filter_command is None or self.filtered_listing_argv is None:
            return self.listing_argv
        return [arg.replace("{name}", filter_command) for arg in self.filtered_listing_argv]

    def list_processes(self, filter_command: str | None = None) -> list[ProcessRecord]:
        """Return the rows of the listing, restricted to *filter_command* if given.

        Raises ExecutionError if the listing command cannot be launched.
        A listing that can't be parsed is logged and gives an empty list.
        """
        argv = self._argv_for(filter_command)
        with self.port.read_lines(argv) as lines:
            try:
                records = parse_listing(lines)
            except ParseError as exc:
                log.error(f"Cannot parse output of {argv[0]!r}", exc, tag=LOG_TAG)
                return []
        if filter_command is not None:
            records = [r for r in records if r.name == filter_command]
        return records

    def find(self, user: str | None = None, name: str | None = None) -> list[ProcessRecord]:
        return [
            r for r in self.list_processes(name)
            if user is None or r.user == user
        ]

    def owner_of(self, name: str) -> str | None:
        """User running the process called *name*, searched in the full listing."""
        log.debug(f"Looking up the user running {name!r}", tag=LOG_TAG)
        for record in self.list_processes():
            if record.name == name and record.user:
                log.info(f"{name} is run by user: {record.user}", tag=LOG_TAG)
                return record.user
        return None

    def find_pid(self, user: str, name: str) -> str | None:
        for record in self.find(user=user, name=name):
            if record.pid:
                log.trace(f"{name} is running by user [{user}] pid: {record.pid}", tag=LOG_TAG)
                return record.pid
        return None

    def is_running(self, user: str, name: str) -> bool:
        return self.find_pid(user, name) is not None
