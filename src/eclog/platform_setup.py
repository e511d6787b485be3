"""Platform checks: capture tool, process listing, kill command."""

from __future__ import annotations

import shutil
from typing import Any

from eclog.errors import ExecutionError
from eclog.process import SubprocessPort
from eclog.process_table import ProcessTable


def check_command(name: str) -> tuple[bool, str]:
    """Check if *name* can be found on PATH."""
    path = shutil.which(name)
    if path:
        return True, f"{name} found at {path}."
    return False, f"{name} not found on PATH."


def check_capture_tool(cfg: dict[str, Any]) -> tuple[bool, str]:
    command = cfg.get("capture_command", "logcat")
    ok, msg = check_command(command)
    if ok:
        return ok, msg
    return False, (
        f"{command} not found on PATH.\n"
        "Install the Android platform tools or point capture_command at another tool."
    )


def check_listing(cfg: dict[str, Any]) -> tuple[bool, str]:
    """Run the process listing once and make sure its header parses."""
    port = SubprocessPort(timeout=float(cfg.get("listing_timeout", 10.0)))
    table = ProcessTable(port, listing_argv=cfg["listing_command"], filtered_listing_argv=None)
    try:
        records = table.list_processes()
    except ExecutionError as exc:
        return False, str(exc)
    if not records:
        return False, (
            f"Could not read any process from {' '.join(cfg['listing_command'])!r}.\n"
            "The output needs a USER column and a PID or NAME column."
        )
    return True, f"Process listing works ({len(records)} processes)."


def run_all_checks(cfg: dict[str, Any]) -> list[tuple[str, bool, str]]:
    """Run platform checks. Returns list of (check_name, passed, message)."""
    results: list[tuple[str, bool, str]] = []

    ok, msg = check_capture_tool(cfg)
    results.append(("Capture tool", ok, msg))

    ok, msg = check_listing(cfg)
    results.append(("Process listing", ok, msg))

    kill = cfg.get("kill_command") or ["kill"]
    ok, msg = check_command(kill[0])
    results.append(("Kill command", ok, msg))

    return results
