"""The host application as seen by the capture supervisor."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from eclog.preferences import Preferences


@dataclass(eq=False)
class AppContext:
    """A running host application.

    *name* is the command name the application shows up under in the
    process listing; it is how the owning user is discovered. *data_dir*
    holds the application's private preference files.

    Compared by identity, so it can key weak mappings.
    """

    name: str
    data_dir: Path

    def __post_init__(self) -> None:
        self.data_dir = Path(self.data_dir).expanduser()

    def preferences(self, namespace: str) -> Preferences:
        return Preferences(self.data_dir / f"{namespace}.json")
