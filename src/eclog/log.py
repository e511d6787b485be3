"""Severity-gated logging facade.

Usage:
    from eclog import log
    log.set_level(log.Level.DEBUG)
    log.debug("connected")                   # default tag + caller prefix
    log.warn("retrying", exc, tag="Network") # explicit tag, no prefix

Every call is checked against the process-wide threshold before anything is
formatted. Calls without an explicit tag use the default tag and get a
``<tid>[(file:line)#method] `` prefix naming the caller. Messages longer than
MAX_CHUNK_LENGTH are written in numbered slices so the sink never truncates
them. Records end up in the stdlib logger named by the tag.
"""

from __future__ import annotations

import logging
import os
import sys
import threading
import traceback
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable, Optional, Protocol

from eclog.errors import WtfError

MAX_CHUNK_LENGTH = 2048
DEFAULT_TAG = "Log"

# Frames between CallerLocation.capture() and the user's call:
# SeverityLogger._log, then the public method or module function.
_WRAPPER_DEPTH = 2

TRACE = 5
logging.addLevelName(TRACE, "TRACE")


class Level(IntEnum):
    """Log severities, ordered by rank."""

    UNRESOLVED = -1
    TRACE = 2
    DEBUG = 3
    INFO = 4
    WARN = 5
    ERROR = 6
    FATAL_ASSERT = 7
    DISABLED = 100

    @classmethod
    def parse(cls, value: Any) -> Level:
        """Accept a Level, its integer rank, or a (case-insensitive) name."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            name = value.strip().upper()
            name = _LEVEL_ALIASES.get(name, name)
            if name in cls.__members__:
                return cls[name]
            try:
                value = int(name)
            except ValueError:
                raise ValueError(f"Invalid log level: {value!r}") from None
        try:
            return cls(value)
        except (TypeError, ValueError):
            raise ValueError(f"Invalid log level: {value!r}") from None


_LEVEL_ALIASES = {
    "VERBOSE": "TRACE",
    "WARNING": "WARN",
    "ASSERT": "FATAL_ASSERT",
    "WTF": "FATAL_ASSERT",
    "NONE": "DISABLED",
    "OFF": "DISABLED",
}

_STDLIB_LEVELS = {
    Level.TRACE: TRACE,
    Level.DEBUG: logging.DEBUG,
    Level.INFO: logging.INFO,
    Level.WARN: logging.WARNING,
    Level.ERROR: logging.ERROR,
    Level.FATAL_ASSERT: logging.CRITICAL,
}

WtfHook = Callable[[Optional[str], Optional[BaseException]], None]


def stack_trace_string(exc: BaseException | None) -> str:
    """Formatted traceback for *exc*, or an empty string."""
    if exc is None:
        return ""
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))


@dataclass(frozen=True)
class CallerLocation:
    """Where a log call came from."""

    filename: str
    lineno: int
    function: str

    @classmethod
    def capture(cls, depth: int = 0) -> CallerLocation:
        """Describe the frame *depth* levels above whoever called capture()."""
        frame = sys._getframe(depth + 1)
        code = frame.f_code
        return cls(os.path.basename(code.co_filename), frame.f_lineno, code.co_name)

    def prefix(self, tid: int | None = None) -> str:
        if tid is None:
            tid = threading.get_native_id()
        return f"<{tid}>[({self.filename}:{self.lineno})#{self.function}] "


class Sink(Protocol):
    def write(
        self,
        level: Level,
        tag: str,
        msg: str,
        cause: BaseException | None = None,
    ) -> int:
        ...


class LoggingSink:
    """Write records to the stdlib logger named after the tag.

    Returns the record size the way a native log buffer counts it:
    priority byte, tag, NUL, payload, NUL.
    """

    def write(
        self,
        level: Level,
        tag: str,
        msg: str,
        cause: BaseException | None = None,
    ) -> int:
        payload = msg
        if cause is not None:
            trace = stack_trace_string(cause)
            payload = f"{msg}\n{trace}" if msg else trace
        logging.getLogger(tag).log(_STDLIB_LEVELS[level], "%s", payload)
        return len(tag.encode("utf-8")) + len(payload.encode("utf-8")) + 3


class SeverityLogger:
    """Threshold, default tag, assert hooks and a sink.

    *debug_mode* is fixed for the lifetime of the logger. It picks the
    default threshold (TRACE vs DISABLED) and what an assert-level call does
    when no hook is registered: raise in debug mode, carry on in release.
    """

    def __init__(
        self,
        debug_mode: bool = __debug__,
        sink: Sink | None = None,
        default_tag: str = DEFAULT_TAG,
    ):
        self.debug_mode = debug_mode
        self.sink: Sink = sink if sink is not None else LoggingSink()
        self._level = Level.UNRESOLVED
        self._default_tag = default_tag
        self._wtf_hook: WtfHook | None = None
        self._wtf_debug_hook: WtfHook | None = None

    # -- configuration ------------------------------------------------------

    @property
    def level(self) -> Level:
        if self._level is Level.UNRESOLVED:
            return Level.TRACE if self.debug_mode else Level.DISABLED
        return self._level

    @level.setter
    def level(self, value: Level | int | str) -> None:
        self.set_level(value)

    def set_level(self, value: Level | int | str) -> None:
        """Set the threshold. Raises ValueError and keeps the old one on bad input."""
        level = Level.parse(value)
        if level is Level.UNRESOLVED:
            return
        self._level = level

    @property
    def default_tag(self) -> str:
        return self._default_tag

    def set_default_tag(self, tag: str) -> None:
        self._default_tag = tag

    def set_wtf_hook(self, hook: WtfHook | None) -> None:
        """Called on assert-level logs in release mode."""
        self._wtf_hook = hook

    def set_wtf_debug_hook(self, hook: WtfHook | None) -> None:
        """Called instead of raising on assert-level logs in debug mode."""
        self._wtf_debug_hook = hook

    @property
    def is_debuggable(self) -> bool:
        return self.level is not Level.DISABLED

    def is_loggable(self, level: Level | int | str) -> bool:
        level = Level.parse(level)
        if level not in _STDLIB_LEVELS:
            return False
        return logging.getLogger(self._default_tag).isEnabledFor(_STDLIB_LEVELS[level])

    # -- emitters -----------------------------------------------------------

    def trace(self, msg=None, cause=None, *, tag=None, location=None) -> int:
        return self._log(Level.TRACE, msg, cause, tag, location)

    def debug(self, msg=None, cause=None, *, tag=None, location=None) -> int:
        return self._log(Level.DEBUG, msg, cause, tag, location)

    def info(self, msg=None, cause=None, *, tag=None, location=None) -> int:
        return self._log(Level.INFO, msg, cause, tag, location)

    def warn(self, msg=None, cause=None, *, tag=None, location=None) -> int:
        return self._log(Level.WARN, msg, cause, tag, location)

    def error(self, msg=None, cause=None, *, tag=None, location=None) -> int:
        return self._log(Level.ERROR, msg, cause, tag, location)

    def wtf(self, msg=None, cause=None, *, tag=None, location=None) -> int:
        """Assert-level log. Raises WtfError in debug mode unless a debug hook is set."""
        return self._log(Level.FATAL_ASSERT, msg, cause, tag, location)

    def _log(
        self,
        level: Level,
        msg: str | None,
        cause: BaseException | None,
        tag: str | None,
        location: CallerLocation | None,
    ) -> int:
        if msg is None and cause is None:
            return 0
        if self.level > level:
            return 0

        if tag is None:
            if location is None:
                location = CallerLocation.capture(_WRAPPER_DEPTH)
            tag = self._default_tag
            msg = location.prefix() + ("" if msg is None else msg)

        if level is Level.FATAL_ASSERT:
            self._on_fatal_assert(msg, cause)

        return self._print(level, tag, msg, cause)

    def _on_fatal_assert(self, msg: str | None, cause: BaseException | None) -> None:
        if self.debug_mode:
            if self._wtf_debug_hook is None:
                raise WtfError(msg) from cause
            self._wtf_debug_hook(msg, cause)
        elif self._wtf_hook is not None:
            self._wtf_hook(msg, cause)

    def _print(
        self,
        level: Level,
        tag: str,
        msg: str | None,
        cause: BaseException | None,
    ) -> int:
        if msg is None:
            msg = ""
        if len(msg) <= MAX_CHUNK_LENGTH:
            return self.sink.write(level, tag, msg, cause)

        tid = threading.get_native_id()
        written = 0
        for index, start in enumerate(range(0, len(msg), MAX_CHUNK_LENGTH)):
            chunk = msg[start:start + MAX_CHUNK_LENGTH]
            written += self.sink.write(level, tag, f"{index}<{tid}>{chunk}")
        if cause is not None:
            written += self.sink.write(level, tag, "", cause)
        return written


# ---------------------------------------------------------------------------
# Process-wide logger
# ---------------------------------------------------------------------------

_default = SeverityLogger()


def get_logger() -> SeverityLogger:
    return _default


def set_logger(logger: SeverityLogger) -> SeverityLogger:
    """Replace the process-wide logger. Returns the previous one."""
    global _default
    previous, _default = _default, logger
    return previous


def get_level() -> Level:
    return _default.level


def set_level(value: Level | int | str) -> None:
    _default.set_level(value)


def set_default_tag(tag: str) -> None:
    _default.set_default_tag(tag)


def set_wtf_hook(hook: WtfHook | None) -> None:
    _default.set_wtf_hook(hook)


def set_wtf_debug_hook(hook: WtfHook | None) -> None:
    _default.set_wtf_debug_hook(hook)


def is_debuggable() -> bool:
    return _default.is_debuggable


def is_loggable(level: Level | int | str) -> bool:
    return _default.is_loggable(level)


# Module-level emitters call _log directly so the caller depth matches
# the SeverityLogger methods.

def trace(msg=None, cause=None, *, tag=None, location=None) -> int:
    return _default._log(Level.TRACE, msg, cause, tag, location)


def debug(msg=None, cause=None, *, tag=None, location=None) -> int:
    return _default._log(Level.DEBUG, msg, cause, tag, location)


def info(msg=None, cause=None, *, tag=None, location=None) -> int:
    return _default._log(Level.INFO, msg, cause, tag, location)


def warn(msg=None, cause=None, *, tag=None, location=None) -> int:
    return _default._log(Level.WARN, msg, cause, tag, location)


def error(msg=None, cause=None, *, tag=None, location=None) -> int:
    return _default._log(Level.ERROR, msg, cause, tag, location)


def wtf(msg=None, cause=None, *, tag=None, location=None) -> int:
    return _default._log(Level.FATAL_ASSERT, msg, cause, tag, location)
