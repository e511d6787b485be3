"""Keep one log capture process (``logcat`` by default) running for the host app.

The capture process outlives the application that started it, so nothing
about it is kept in memory. Every operation asks the process table what is
running right now, under the user that owns the application:

- start: spawn the capture tool unless one owned by us is already running
- stop: kill ours if there is one; nothing running counts as stopped
- reset_logcat: restart capturing the whole log buffer
- clear_logcat: restart capturing only what is logged from now on

Settings changes apply on the next start; the capture tool only reads its
flags at launch.
"""

from __future__ import annotations

import threading
import weakref
from datetime import datetime
from pathlib import Path
from typing import Callable

from eclog import log
from eclog.context import AppContext
from eclog.errors import ConfigurationError, ExecutionError, ReleasedReferenceError
from eclog.process import ProcessPort
from eclog.process_table import ProcessTable
from eclog.settings import PREFS_NAMESPACE, SINCE_FORMAT, CaptureSettings, LogFormat

LOG_TAG = "LogcatSupervisor"

DEFAULT_CAPTURE_COMMAND = "logcat"


def format_since(moment: datetime) -> str:
    """Render *moment* the way ``logcat -T`` expects (millisecond precision)."""
    return moment.strftime(SINCE_FORMAT)[:-3]


def build_capture_command(command: str, settings: CaptureSettings) -> list[str]:
    """Command line for the capture process.

    The stored since checkpoint is passed through as is, so a cleared log
    really starts at the time of the clear.
    """
    destination = settings.destination
    if destination is None:
        raise ConfigurationError("Logcat destination is not set yet!")

    argv = [
        command,
        "-f", destination,
        "-r", str(settings.max_file_size_kb),
        "-n", str(settings.max_files),
        "-v", settings.format,
    ]
    since = settings.since
    if since is not None:
        argv += ["-T", since]
    filter_tag = settings.filter_tag
    if filter_tag is not None:
        # Silence everything, then let the one tag through.
        argv += ["*:S", filter_tag]
    return argv


class LogcatSupervisor:
    """Start, stop and restart the capture process of one application.

    Holds only a weak reference to its AppContext. If the context has been
    released, an operation fails (logged, returns False) unless a new context
    is passed in, in which case the supervisor rebinds to it and carries on.
    Use get_instance() to share one supervisor per live context.
    """

    _instances: weakref.WeakKeyDictionary[AppContext, LogcatSupervisor] = weakref.WeakKeyDictionary()
    _instances_lock = threading.Lock()

    def __init__(
        self,
        context: AppContext,
        table: ProcessTable | None = None,
        port: ProcessPort | None = None,
        capture_command: str = DEFAULT_CAPTURE_COMMAND,
        clock: Callable[[], datetime] = datetime.now,
    ):
        if table is None:
            table = ProcessTable(port)
        self.table = table
        self.port: ProcessPort = port if port is not None else table.port
        self.capture_command = capture_command
        self.capture_name = Path(capture_command).name
        self.clock = clock
        self._context_ref = weakref.ref(context)
        self._start_lock = threading.Lock()

    @classmethod
    def get_instance(cls, context: AppContext, **kwargs) -> LogcatSupervisor:
        """The supervisor of *context*, created on first use.

        *kwargs* only configure a new supervisor; they are ignored, with a
        warning, once one exists for *context*.
        """
        with cls._instances_lock:
            supervisor = cls._instances.get(context)
            if supervisor is None:
                supervisor = cls(context, **kwargs)
                cls._instances[context] = supervisor
            elif kwargs:
                log.warn(
                    f"Supervisor for {context.name!r} exists already, ignoring {sorted(kwargs)}",
                    tag=LOG_TAG,
                )
            return supervisor

    # -- context binding ------------------------------------------------------

    @property
    def context(self) -> AppContext | None:
        return self._context_ref()

    def bind(self, context: AppContext) -> None:
        self._context_ref = weakref.ref(context)
        with self._instances_lock:
            self._instances[context] = self

    def _require_context(self, context: AppContext | None) -> AppContext:
        current = self._context_ref()
        if current is not None:
            return current
        if context is None:
            raise ReleasedReferenceError("Application context has been released.")
        log.debug("Rebinding to a new application context", tag=LOG_TAG)
        self.bind(context)
        return context

    def _bound(self, context: AppContext | None) -> AppContext | None:
        try:
            return self._require_context(context)
        except ReleasedReferenceError as exc:
            log.error(str(exc), tag=LOG_TAG)
            return None

    def settings(self, *, context: AppContext | None = None) -> CaptureSettings | None:
        bound = self._bound(context)
        if bound is None:
            return None
        return CaptureSettings(bound.preferences(PREFS_NAMESPACE))

    # -- identity and liveness ----------------------------------------------------

    def _resolve_owner(self, context: AppContext, settings: CaptureSettings) -> str | None:
        user = settings.owner_user
        if user:
            return user
        try:
            user = self.table.owner_of(context.name)
        except ExecutionError as exc:
            log.error("Not able to list processes on this device!", exc, tag=LOG_TAG)
            return None
        if not user:
            log.error(f"Cannot find the owner of {context.name!r}", tag=LOG_TAG)
            return None
        # The owner stays the same for the lifetime of the installation.
        settings.owner_user = user
        return user

    def owner_user(self, *, context: AppContext | None = None) -> str | None:
        """The user the application runs as, discovered once and cached."""
        bound = self._bound(context)
        if bound is None:
            return None
        return self._resolve_owner(bound, CaptureSettings(bound.preferences(PREFS_NAMESPACE)))

    def capture_pid(self, *, context: AppContext | None = None) -> str | None:
        """Pid of our running capture process, if any."""
        user = self.owner_user(context=context)
        if user is None:
            return None
        try:
            return self.table.find_pid(user, self.capture_name)
        except ExecutionError as exc:
            log.error("Error on looking for the capture process", exc, tag=LOG_TAG)
            return None

    def is_running(self, *, context: AppContext | None = None) -> bool:
        return self.capture_pid(context=context) is not None

    def build_command(self, *, context: AppContext | None = None) -> list[str]:
        settings = self.settings(context=context)
        if settings is None:
            raise ReleasedReferenceError("Application context has been released.")
        return build_capture_command(self.capture_command, settings)

    # -- operations -----------------------------------------------------------

    def start(self, clear_previous_log: bool = True, *, context: AppContext | None = None) -> bool:
        """Start capturing unless our capture process is already running.

        *clear_previous_log* deletes the destination file first; otherwise new
        output is appended to it.

        Returns True if a capture process is running afterwards. The process
        table may take a moment to show a freshly spawned process, so False
        right after a spawn can be a false negative.

        Raises ConfigurationError if no destination was ever set.
        """
        bound = self._bound(context)
        if bound is None:
            return False

        with self._start_lock:
            settings = CaptureSettings(bound.preferences(PREFS_NAMESPACE))
            user = self._resolve_owner(bound, settings)
            if user is None:
                # Without an owner we can't tell ours apart; don't risk duplicates.
                log.warn("Cannot start logcat due to app user is unknown.", tag=LOG_TAG)
                return False
            log.trace(f"App running by: {user}", tag=LOG_TAG)

            try:
                if self.table.is_running(user, self.capture_name):
                    log.trace("logcat running already", tag=LOG_TAG)
                    return True

                argv = build_capture_command(self.capture_command, settings)
                if clear_previous_log:
                    self._delete_old_log(Path(settings.destination))

                self.port.spawn(argv)
                log.trace(f"Started {argv}", tag=LOG_TAG)
                return self.table.is_running(user, self.capture_name)
            except ExecutionError as exc:
                log.error("Error on starting logcat", exc, tag=LOG_TAG)
                return False

    def stop(self, *, context: AppContext | None = None) -> bool:
        """Kill our capture process. True if it was killed or none was running."""
        bound = self._bound(context)
        if bound is None:
            return False

        settings = CaptureSettings(bound.preferences(PREFS_NAMESPACE))
        user = self._resolve_owner(bound, settings)
        if user is None:
            log.error("Cannot get ps user!", tag=LOG_TAG)
            return False

        try:
            pid = self.table.find_pid(user, self.capture_name)
            if pid is None:
                return True
            exit_code = self.port.kill(pid)
        except ExecutionError as exc:
            log.error("Error on kill logcat", exc, tag=LOG_TAG)
            return False
        log.trace(f"Stopped logcat exit code: {exit_code}", tag=LOG_TAG)
        return True

    def reset_logcat(self, *, context: AppContext | None = None) -> bool:
        """Restart capturing with the whole log buffer.

        Also forgets the cached owner so it is looked up afresh.
        """
        bound = self._bound(context)
        if bound is None:
            return False

        stopped = self.stop(context=bound)
        log.debug(f"Logcat stopped: {stopped}", tag=LOG_TAG)

        settings = CaptureSettings(bound.preferences(PREFS_NAMESPACE))
        settings.since = None
        settings.clear_owner()
        log.debug("Reset logcat", tag=LOG_TAG)

        return self.start(context=bound)

    def clear_logcat(self, *, context: AppContext | None = None) -> bool:
        """Restart capturing only what is logged from now on."""
        bound = self._bound(context)
        if bound is None:
            return False

        since = format_since(self.clock())

        stopped = self.stop(context=bound)
        log.debug(f"Logcat stopped: {stopped}", tag=LOG_TAG)

        CaptureSettings(bound.preferences(PREFS_NAMESPACE)).since = since
        log.debug(f"Clear logcat since: {since}", tag=LOG_TAG)

        return self.start(context=bound)

    # -- settings -------------------------------------------------------------

    def _update(self, context: AppContext | None, name: str, value: object) -> bool:
        settings = self.settings(context=context)
        if settings is None:
            return False
        setattr(settings, name, value)
        return True

    def set_max_file_size(self, size_kb: int, *, context: AppContext | None = None) -> bool:
        """Size in KB of each capture file before it is rotated."""
        return self._update(context, "max_file_size_kb", size_kb)

    def set_format(self, fmt: LogFormat | str, *, context: AppContext | None = None) -> bool:
        return self._update(context, "format", LogFormat(fmt))

    def set_max_files(self, count: int, *, context: AppContext | None = None) -> bool:
        """Number of rotated files kept before the oldest is overwritten."""
        return self._update(context, "max_files", count)

    def set_filter_tag(self, tag: str | None, *, context: AppContext | None = None) -> bool:
        """Only capture this tag. None or "" captures everything."""
        return self._update(context, "filter_tag", tag)

    def set_destination(self, path: str | Path, *, context: AppContext | None = None) -> bool:
        return self._update(context, "destination", path)

    @staticmethod
    def _delete_old_log(path: Path) -> None:
        if path.is_file():
            try:
                path.unlink()
            except OSError as exc:
                log.error("Error on delete old log.", exc, tag=LOG_TAG)
                return
        log.debug("Deleted old log.", tag=LOG_TAG)


def get_supervisor(context: AppContext, **kwargs) -> LogcatSupervisor:
    return LogcatSupervisor.get_instance(context, **kwargs)
