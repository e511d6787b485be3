"""CLI entry point for the eclog command to run, stop and configure the log capture process."""

from __future__ import annotations

import sys
from pathlib import Path

import click
import yaml
from rich.console import Console
from rich.table import Table

from eclog import __version__, log
from eclog.config import CONFIG_PATH, init_config_if_missing, load_config
from eclog.context import AppContext
from eclog.errors import ConfigurationError, ExecutionError
from eclog.logging_setup import setup_logging
from eclog.process import SubprocessPort
from eclog.process_table import ProcessTable
from eclog.settings import LogFormat
from eclog.supervisor import LogcatSupervisor

console = Console(highlight=False)

# ps on Linux truncates command names to 15 characters
_PS_NAME_LENGTH = 15


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

def _resolve_app_name(name: str | None, cfg: dict) -> str:
    """Determine the process name the owning user is looked up by.

    Priority: --name > config app_name > name of the running command
    """
    if name:
        return name
    if cfg.get("app_name"):
        return cfg["app_name"]
    return Path(sys.argv[0]).name[:_PS_NAME_LENGTH]


def _resolve_data_dir(data_dir: str | None, cfg: dict) -> Path:
    return Path(data_dir or cfg.get("data_dir") or "~/.config/eclog/data").expanduser()


def _build_table(cfg: dict) -> ProcessTable:
    port = SubprocessPort(
        kill_command=cfg.get("kill_command") or ["kill"],
        timeout=float(cfg.get("listing_timeout", 10.0)),
    )
    return ProcessTable(
        port,
        listing_argv=cfg["listing_command"],
        filtered_listing_argv=cfg.get("filtered_listing_command"),
    )


def _supervisor(ctx: click.Context) -> LogcatSupervisor:
    return ctx.obj["supervisor"]


def _report(ok: bool, done: str, failed: str) -> None:
    if ok:
        console.print(f"  [green]{done}[/green]")
        return
    console.print(f"  [red]{failed}[/red] [dim]See the log for details.[/dim]")
    sys.exit(1)


def _run_or_explain(ctx: click.Context, action, done: str, failed: str) -> None:
    try:
        ok = action()
    except ConfigurationError as exc:
        console.print(f"  [red bold]Error:[/red bold] {exc}")
        console.print(f"  Run [bold]'{ctx.find_root().info_name} set --dest FILE'[/bold] first.")
        sys.exit(1)
    _report(ok, done, failed)


# ---------------------------------------------------------------------------
# Main command group
# ---------------------------------------------------------------------------

@click.group()
@click.option("--name", type=str, default=None,
              help="Process name of the host application (used to find its user).")
@click.option("--data-dir", type=click.Path(file_okay=False), default=None,
              help="Folder holding the persisted capture settings.")
@click.option("--debug", is_flag=True, default=False, help="Enable debug logging.")
@click.version_option(__version__, prog_name="eclog")
@click.pass_context
def main(ctx: click.Context, name: str | None, data_dir: str | None, debug: bool) -> None:
    """eclog: keep a log capture process running across restarts."""
    setup_logging(debug=debug)
    cfg = load_config()

    log.set_default_tag(cfg.get("default_tag") or log.DEFAULT_TAG)
    if debug:
        log.set_level(log.Level.TRACE)
    elif cfg.get("log_level") is not None:
        try:
            log.set_level(cfg["log_level"])
        except ValueError as exc:
            console.print(f"  [yellow]Ignoring log_level in config:[/yellow] {exc}")

    ctx.ensure_object(dict)
    app = AppContext(name=_resolve_app_name(name, cfg), data_dir=_resolve_data_dir(data_dir, cfg))
    # The supervisor only holds a weak reference; keep the context alive here.
    ctx.obj["app"] = app
    ctx.obj["cfg"] = cfg
    table = _build_table(cfg)
    ctx.obj["supervisor"] = LogcatSupervisor.get_instance(
        app,
        table=table,
        capture_command=cfg.get("capture_command") or "logcat",
    )


# ---------------------------------------------------------------------------
# Capture process commands
# ---------------------------------------------------------------------------

@main.command()
@click.option("--append", is_flag=True, default=False,
              help="Keep the existing log file and append to it.")
@click.pass_context
def start(ctx: click.Context, append: bool) -> None:
    """Start capturing, unless already running."""
    supervisor = _supervisor(ctx)
    _run_or_explain(
        ctx,
        lambda: supervisor.start(clear_previous_log=not append),
        "Capture running.",
        "Capture not running.",
    )


@main.command()
@click.pass_context
def stop(ctx: click.Context) -> None:
    """Stop the capture process."""
    _report(_supervisor(ctx).stop(), "Capture stopped.", "Could not stop the capture process.")


@main.command()
@click.pass_context
def reset(ctx: click.Context) -> None:
    """Restart capturing the whole log buffer."""
    supervisor = _supervisor(ctx)
    _run_or_explain(ctx, supervisor.reset_logcat, "Capture restarted from the full buffer.",
                    "Capture not running.")


@main.command()
@click.pass_context
def clear(ctx: click.Context) -> None:
    """Restart capturing only what is logged from now on."""
    supervisor = _supervisor(ctx)
    _run_or_explain(ctx, supervisor.clear_logcat, "Capture restarted from now.",
                    "Capture not running.")


@main.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show the capture settings and whether the capture process is running."""
    supervisor = _supervisor(ctx)
    settings = supervisor.settings()
    data = {
        "app_name": ctx.obj["app"].name,
        "data_dir": str(ctx.obj["app"].data_dir),
        "command": supervisor.capture_command,
        "pid": supervisor.capture_pid(),
    }
    if settings is not None:
        data.update(settings.as_dict())
    # Plain echo: rich would wrap long paths and break the YAML.
    click.echo(yaml.safe_dump(data, sort_keys=False, allow_unicode=True).rstrip())


@main.command(name="set")
@click.option("--dest", type=click.Path(dir_okay=False), default=None,
              help="File the capture process writes to.")
@click.option("--max-size", type=click.IntRange(min=1), default=None,
              help="Size in KB of each log file before rotating.")
@click.option("--max-files", type=click.IntRange(min=1), default=None,
              help="Number of rotated log files to keep.")
@click.option("--format", "fmt", type=click.Choice([f.value for f in LogFormat]), default=None,
              help="Output format of the capture tool.")
@click.option("--filter-tag", type=str, default=None, help="Only capture this log tag.")
@click.option("--no-filter", is_flag=True, default=False, help="Capture every tag again.")
@click.pass_context
def set_cmd(
    ctx: click.Context,
    dest: str | None,
    max_size: int | None,
    max_files: int | None,
    fmt: str | None,
    filter_tag: str | None,
    no_filter: bool,
) -> None:
    """Change capture settings. They apply on the next start."""
    supervisor = _supervisor(ctx)
    changed: list[str] = []
    if dest is not None:
        supervisor.set_destination(dest)
        changed.append("destination")
    if max_size is not None:
        supervisor.set_max_file_size(max_size)
        changed.append("max size")
    if max_files is not None:
        supervisor.set_max_files(max_files)
        changed.append("max files")
    if fmt is not None:
        supervisor.set_format(fmt)
        changed.append("format")
    if no_filter:
        supervisor.set_filter_tag(None)
        changed.append("filter")
    elif filter_tag is not None:
        supervisor.set_filter_tag(filter_tag)
        changed.append("filter")

    if not changed:
        console.print("  [dim]Nothing to change.[/dim]")
        return
    console.print(f"  [green]Saved[/green]  {', '.join(changed)}")
    if supervisor.is_running():
        console.print(f"  [dim]Run '{ctx.find_root().info_name} reset' or 'clear' to apply.[/dim]")


# ---------------------------------------------------------------------------
# ps subcommand
# ---------------------------------------------------------------------------

@main.command()
@click.argument("name", required=False)
@click.option("--user", type=str, default=None, help="Only show processes of this user.")
@click.pass_context
def ps(ctx: click.Context, name: str | None, user: str | None) -> None:
    """List processes as eclog sees them (exact NAME match)."""
    table = _supervisor(ctx).table
    try:
        records = table.find(user=user, name=name)
    except ExecutionError as exc:
        console.print(f"  [red]Error:[/red] {exc}")
        sys.exit(1)

    out = Table("USER", "PID", "NAME", box=None, pad_edge=False)
    for record in records:
        out.add_row(record.user or "", record.pid or "", record.name or "")
    console.print(out)


# ---------------------------------------------------------------------------
# setup / config subcommands
# ---------------------------------------------------------------------------

@main.command()
@click.pass_context
def setup(ctx: click.Context) -> None:
    """Check dependencies and create the config file."""
    from eclog.platform_setup import run_all_checks

    created = init_config_if_missing()
    if created:
        console.print(f"  Created default config at [dim]{CONFIG_PATH}[/dim]")
    else:
        console.print(f"  Config already exists at [dim]{CONFIG_PATH}[/dim]")

    console.print()
    all_ok = True
    for check, ok, msg in run_all_checks(ctx.obj["cfg"]):
        icon = "[green]OK[/green]" if ok else "[red]MISSING[/red]"
        console.print(f"  [{icon}] {check}: {msg}")
        all_ok = all_ok and ok

    console.print()
    if all_ok:
        console.print("  [green]All checks passed.[/green]")
    else:
        console.print("  [yellow]Some checks failed.[/yellow] See above.")


@main.command()
@click.option("--show", is_flag=True, help="Show current config values.")
@click.pass_context
def config(ctx: click.Context, show: bool) -> None:
    """Show or edit configuration."""
    if show:
        for key, val in load_config().items():
            console.print(f"  [bold]{key}:[/bold] {val}")
        return
    console.print(f"  Config file: [dim]{CONFIG_PATH}[/dim]")
    console.print(
        f"  Edit it directly, or use [bold]'{ctx.find_root().info_name} config --show'[/bold] "
        "to view current values."
    )
