#!/usr/bin/env python3
"""
DiskChatter CLI — run and inspect the activity daemon.

Usage:
    diskchatter                   Run the daemon in the foreground
    diskchatter start             Run the daemon in the foreground
    diskchatter stop              Stop a running daemon (SIGTERM)
    diskchatter status            Is a daemon running?
    diskchatter config            Show the resolved configuration
    diskchatter check             Verify watch directories and sound clips
"""

import argparse
import os
import signal
import sys
from pathlib import Path
from typing import List, Optional, Tuple

from rich import box
from rich.console import Console
from rich.table import Table

from diskchatter import __version__
from diskchatter.core.config import DiskChatterConfig
from diskchatter.core.daemon import DiskChatterDaemon
from diskchatter.core.log import setup_logging

console = Console()

OK = "[green]✓[/]"
MISSING = "[red]✗[/]"


def _is_running(config: DiskChatterConfig) -> Tuple[bool, Optional[int]]:
    """Check if daemon is running. Returns (running, pid)."""
    pid_file = Path(config.daemon.pid_file).expanduser()
    if pid_file.exists():
        try:
            pid = int(pid_file.read_text().strip())
            os.kill(pid, 0)
            return True, pid
        except (ValueError, ProcessLookupError, PermissionError):
            pass
    return False, None


# ─── Commands ────────────────────────────────────────────────────

def cmd_start(config: DiskChatterConfig, args) -> int:
    """Run the daemon in the foreground."""
    setup_logging(config)
    return DiskChatterDaemon(config=config).run()


def cmd_stop(config: DiskChatterConfig, args) -> int:
    """Stop the daemon."""
    running, pid = _is_running(config)
    if not running:
        console.print("[dim]Not running[/]")
        return 0
    os.kill(pid, signal.SIGTERM)
    console.print(f"[green]✓[/] Sent SIGTERM to DiskChatter (pid {pid})")
    return 0


def cmd_status(config: DiskChatterConfig, args) -> int:
    running, pid = _is_running(config)
    if running:
        console.print(f"💾 DiskChatter [green]running[/] (pid {pid})")
    else:
        console.print("💾 DiskChatter [dim]not running[/]")
    return 0


def cmd_config(config: DiskChatterConfig, args) -> int:
    """Show current configuration."""
    source = config.source_path or "(defaults — no config file found)"
    console.print(f"💾 [bold magenta]DiskChatter Config[/] — {source}\n")

    table = Table(box=box.ROUNDED, show_header=False, padding=(0, 2))
    table.add_column("Key", style="bold", min_width=22)
    table.add_column("Value")

    for directory in config.config.directories or ["(none)"]:
        table.add_row("Directory", directory)
    table.add_row("GPIO pin", str(config.config.gpio_pin))
    table.add_row("Volume", "unchanged" if config.config.volume is None else f"{config.config.volume}%")
    table.add_row("", "")
    table.add_row("Short clip", config.sounds.short_activity or "(none)")
    table.add_row("Long clip", config.sounds.long_activity or "(none)")
    table.add_row("Clip base path", str(config.sound_base_path()))
    table.add_row("", "")
    table.add_row("Burst", f"{config.activity.burst_threshold} events / {config.activity.window_seconds}s")
    table.add_row("Pulse phase", f"{config.indicator.min_interval}s – {config.indicator.max_interval}s")
    table.add_row("Log file", config.logging.file)

    console.print(table)
    console.print()
    return 0


def _check_rows(config: DiskChatterConfig) -> List[Tuple[str, str, bool]]:
    rows = []
    for directory in config.config.directories:
        resolved = DiskChatterConfig.expand_directory(directory)
        rows.append(("Directory", str(resolved), resolved.is_dir()))
    base = config.sound_base_path()
    for label, ref in (("Short clip", config.sounds.short_activity), ("Long clip", config.sounds.long_activity)):
        if not ref:
            rows.append((label, "(not configured)", False))
            continue
        path = Path(ref).expanduser()
        if not path.is_absolute():
            path = base / path
        rows.append((label, str(path), path.is_file()))
    return rows


def cmd_check(config: DiskChatterConfig, args) -> int:
    """Verify directories and clips. Exit 1 when nothing can be watched."""
    rows = _check_rows(config)

    table = Table(box=box.SIMPLE, show_header=True)
    table.add_column("", width=2)
    table.add_column("What", style="bold")
    table.add_column("Path")
    for label, path, ok in rows:
        table.add_row(OK if ok else MISSING, label, path)
    console.print(table)

    watchable = sum(1 for label, _, ok in rows if label == "Directory" and ok)
    if watchable == 0:
        console.print("[red]No valid directories to monitor[/]")
        return 1
    console.print(f"[green]{watchable}[/] director{'y' if watchable == 1 else 'ies'} ready")
    return 0


# ─── Main ────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="diskchatter",
        description="💾 DiskChatter — hard-disk activity light and sound",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-c", "--config", help="Path to config.yaml")
    parser.add_argument("--no-color", action="store_true", help="Disable colors")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    sub = parser.add_subparsers(dest="command")
    sub.add_parser("start", help="Run the daemon in the foreground")
    sub.add_parser("stop", help="Stop a running daemon")
    sub.add_parser("status", help="Show whether the daemon is running")
    sub.add_parser("config", help="Show current configuration")
    sub.add_parser("check", help="Verify watch directories and sound clips")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.no_color:
        console.no_color = True

    try:
        config = DiskChatterConfig.load(args.config)
    except ValueError as e:
        console.print(f"[red]{e}[/]")
        return 2

    commands = {
        "start": cmd_start,
        "stop": cmd_stop,
        "status": cmd_status,
        "config": cmd_config,
        "check": cmd_check,
    }
    return commands[args.command or "start"](config, args)


if __name__ == "__main__":
    sys.exit(main())
