"""Persisted settings of the capture process."""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from eclog.preferences import Preferences

PREFS_NAMESPACE = "LogcatPref"

KEY_OWNER_USER = "AppLinuxUserName"
KEY_SINCE = "LogcatSince"
KEY_MAX_FILE_SIZE = "LogcatFileMaxSize"
KEY_FORMAT = "LogcatFormat"
KEY_MAX_FILES = "LogcatMaxLogFile"
KEY_FILTER_TAG = "LogcatFilterLogTag"
KEY_DESTINATION = "LogcatPath"

DEFAULT_MAX_FILE_SIZE_KB = 256
DEFAULT_MAX_FILES = 1

# Format accepted by the capture tool's -T flag.
SINCE_FORMAT = "%m-%d %H:%M:%S.%f"


class LogFormat(str, Enum):
    """Output formats understood by ``logcat -v``."""

    BRIEF = "brief"
    PROCESS = "process"
    TAG = "tag"
    THREAD = "thread"
    RAW = "raw"
    TIME = "time"
    THREADTIME = "threadtime"
    LONG = "long"

    def __str__(self) -> str:
        return self.value


DEFAULT_FORMAT = LogFormat.TIME


class CaptureSettings:
    """Typed view over the capture keys of a Preferences store."""

    def __init__(self, prefs: Preferences):
        self.prefs = prefs

    @property
    def destination(self) -> str | None:
        return self.prefs.get_string(KEY_DESTINATION)

    @destination.setter
    def destination(self, path: str | Path) -> None:
        self.prefs.put(KEY_DESTINATION, str(Path(path).expanduser().absolute()))

    @property
    def max_file_size_kb(self) -> int:
        return self.prefs.get_int(KEY_MAX_FILE_SIZE, DEFAULT_MAX_FILE_SIZE_KB)

    @max_file_size_kb.setter
    def max_file_size_kb(self, size: int) -> None:
        self.prefs.put(KEY_MAX_FILE_SIZE, int(size))

    @property
    def max_files(self) -> int:
        return self.prefs.get_int(KEY_MAX_FILES, DEFAULT_MAX_FILES)

    @max_files.setter
    def max_files(self, count: int) -> None:
        self.prefs.put(KEY_MAX_FILES, int(count))

    @property
    def format(self) -> str:
        return self.prefs.get_string(KEY_FORMAT) or DEFAULT_FORMAT.value

    @format.setter
    def format(self, fmt: LogFormat | str) -> None:
        self.prefs.put(KEY_FORMAT, LogFormat(fmt).value)

    @property
    def filter_tag(self) -> str | None:
        return self.prefs.get_string(KEY_FILTER_TAG)

    @filter_tag.setter
    def filter_tag(self, tag: str | None) -> None:
        if not tag:
            self.prefs.remove(KEY_FILTER_TAG)
        else:
            self.prefs.put(KEY_FILTER_TAG, tag)

    @property
    def since(self) -> str | None:
        return self.prefs.get_string(KEY_SINCE)

    @since.setter
    def since(self, checkpoint: str | None) -> None:
        if checkpoint is None:
            self.prefs.remove(KEY_SINCE)
        else:
            self.prefs.put(KEY_SINCE, checkpoint)

    @property
    def owner_user(self) -> str | None:
        return self.prefs.get_string(KEY_OWNER_USER) or None

    @owner_user.setter
    def owner_user(self, user: str) -> None:
        self.prefs.put(KEY_OWNER_USER, user)

    def clear_owner(self) -> None:
        """Forget the cached owner; it is looked up again on the next start."""
        self.prefs.remove(KEY_OWNER_USER)

    def as_dict(self) -> dict[str, object]:
        return {
            "destination": self.destination,
            "max_file_size_kb": self.max_file_size_kb,
            "max_files": self.max_files,
            "format": self.format,
            "filter_tag": self.filter_tag,
            "since": self.since,
            "owner_user": self.owner_user,
        }
