"""Exceptions raised by eclog."""

from __future__ import annotations


class EclogError(Exception):
    """Base class for all eclog errors."""


class ConfigurationError(EclogError):
    """The capture destination was never configured before start."""


class ExecutionError(EclogError):
    """An external process could not be launched or signalled."""


class ParseError(EclogError):
    """Process listing output is missing the columns we need."""


class ReleasedReferenceError(EclogError):
    """The application context a supervisor was bound to is gone."""


class WtfError(RuntimeError):
    """Raised by an assert-level log call in debug mode when no hook is set."""
