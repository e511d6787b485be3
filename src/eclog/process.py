"""External process port: list, spawn, kill.

The supervisor and the process table only talk to processes through a
ProcessPort, so tests can swap in an in-memory fake.
"""

from __future__ import annotations

import subprocess
import threading
from contextlib import contextmanager
from typing import ContextManager, Iterator, Protocol, Sequence

from eclog import log
from eclog.errors import ExecutionError

LOG_TAG = "ProcessPort"

DEFAULT_WAIT_TIMEOUT = 10.0


class ProcessPort(Protocol):
    def read_lines(self, argv: Sequence[str]) -> ContextManager[Iterator[str]]:
        """Run *argv* and yield its stdout line by line; reap on exit."""
        ...

    def spawn(self, argv: Sequence[str]) -> int:
        """Start a detached process with merged output. Return its pid."""
        ...

    def kill(self, pid: str) -> int:
        """Signal *pid* to terminate and wait for the signaller. Return its exit code."""
        ...


class SubprocessPort:
    """ProcessPort backed by :mod:`subprocess`.

    Spawned processes keep running after the port is gone. While the port is
    alive it holds their handles and reaps any that exited before each
    listing, so a capture tool that died at launch never lingers in the
    process table as a zombie.
    """

    def __init__(
        self,
        kill_command: Sequence[str] = ("kill",),
        timeout: float = DEFAULT_WAIT_TIMEOUT,
    ):
        self.kill_command = list(kill_command)
        self.timeout = timeout
        self._children: list[subprocess.Popen] = []
        self._children_lock = threading.Lock()

    def reap(self) -> list[int]:
        """Collect spawned processes that have exited. Returns their pids."""
        with self._children_lock:
            exited = [p for p in self._children if p.poll() is not None]
            for proc in exited:
                self._children.remove(proc)
        for proc in exited:
            log.debug(f"Reaped {proc.pid} (exit code {proc.returncode})", tag=LOG_TAG)
        return [p.pid for p in exited]

    @contextmanager
    def read_lines(self, argv: Sequence[str]) -> Iterator[Iterator[str]]:
        self.reap()
        try:
            proc = subprocess.Popen(
                list(argv),
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                text=True,
            )
        except OSError as exc:
            raise ExecutionError(f"Cannot run {argv[0]!r}: {exc}") from exc

        try:
            yield (line.rstrip("\r\n") for line in proc.stdout)
        finally:
            proc.stdout.close()
            try:
                code = proc.wait(timeout=self.timeout)
                log.trace(f"{argv[0]} exited with {code}", tag=LOG_TAG)
            except subprocess.TimeoutExpired:
                log.error(f"{argv[0]} did not exit in {self.timeout}s, killing it", tag=LOG_TAG)
                proc.kill()
                proc.wait()

    def spawn(self, argv: Sequence[str]) -> int:
        try:
            proc = subprocess.Popen(
                list(argv),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )
        except OSError as exc:
            raise ExecutionError(f"Cannot start {argv[0]!r}: {exc}") from exc
        with self._children_lock:
            self._children.append(proc)
        return proc.pid

    def kill(self, pid: str) -> int:
        cmd = [*self.kill_command, str(pid)]
        log.debug(str(cmd), tag=LOG_TAG)
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise ExecutionError(f"Cannot kill {pid}: {exc}") from exc
        return result.returncode
