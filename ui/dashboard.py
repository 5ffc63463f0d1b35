"""
Rich-based terminal presentation for speedprobe runs.

All formatting helpers live in ``engine.stats`` -- this module only does
presentation via the ``rich`` library.  ``ConsoleEvents`` plugs into the
orchestrator's event hooks.
"""
from __future__ import annotations

import logging
import os
from typing import List, Optional, Sequence

from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from engine.models import (
    LatencyResult,
    MeasurementResult,
    RunState,
    ServerCandidate,
    is_unreachable,
)
from engine.runner import MeasurementEvents
from engine.stats import format_latency, format_speed

console = Console()
err_console = Console(stderr=True)

ERROR = "ERROR"


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

def configure_logging(debug: bool = False, verbose: bool = False) -> None:
    """
    Route all log records through a ``RichHandler`` on stderr.

    ``SPEEDPROBE_LOG_LEVEL`` (DEBUG, INFO, WARNING, ...) overrides the
    level picked from the flags.
    """
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING

    override = os.environ.get("SPEEDPROBE_LOG_LEVEL", "").upper()
    if override in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        level = getattr(logging, override)

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=debug, rich_tracebacks=True)],
        force=True,
    )
    # third-party chatter stays quiet unless explicitly asked for
    for name in ("asyncio", "websockets", "aiohttp"):
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


# ---------------------------------------------------------------------------
# Line formatting
# ---------------------------------------------------------------------------

def format_host_line(host: str, latency_ms: Optional[float], kbps: Optional[int]) -> str:
    """``"  23.4 ms |    95123 kbit | host"`` with ERROR for missing values."""
    ping = ERROR if latency_ms is None or is_unreachable(latency_ms) else f"{latency_ms:.1f}"
    kbit = ERROR if kbps is None else str(kbps)
    return f"{ping:>6} ms | {kbit:>8} kbit | {host}"


def result_line(result: MeasurementResult) -> str:
    if result.success:
        return format_host_line(result.host, result.latency_ms, result.kbps)
    # a failed host never shows a numeric throughput
    latency = None if is_unreachable(result.latency_ms) else result.latency_ms
    return format_host_line(result.host, latency, None)


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------

def print_header() -> None:
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]speedprobe[/bold cyan]\n"
            "[dim]Latency and download throughput against the best nearby server[/dim]",
            border_style="cyan",
        )
    )
    console.print()


def print_settings(rows: Sequence[tuple]) -> None:
    table = Table(title="Settings", show_header=False, box=box.SIMPLE)
    table.add_column(style="dim")
    table.add_column(style="bold")
    for name, value in rows:
        table.add_row(name, value)
    console.print(table)


def print_candidates(term: str, ranked: Sequence[ServerCandidate], selected: int = 1) -> None:
    table = Table(title=f"Server search: {term or '(nearest)'}", box=box.ROUNDED)
    table.add_column("#", style="dim", width=4)
    table.add_column("Sponsor", style="bold")
    table.add_column("Name")
    table.add_column("Distance", justify="right")
    table.add_column("Latency", justify="right")
    table.add_column("Host", style="dim")

    for i, server in enumerate(ranked):
        chosen = i < selected
        table.add_row(
            f"{'>' if chosen else ' '}{i + 1}",
            server.sponsor,
            server.name,
            f"{server.distance:.0f} km",
            format_latency(server.latency_ms),
            server.host,
            style="green" if chosen else None,
        )

    console.print(table)


def print_latency_details(latency: LatencyResult) -> None:
    """Raw vs. filtered sample counts and the resulting mean."""
    if not latency.samples:
        return
    console.print(
        f"[dim]  {len(latency.samples)} samples, {len(latency.filtered)} kept after "
        f"outlier rejection, min {min(latency.samples):.1f} ms, "
        f"max {max(latency.samples):.1f} ms[/dim]"
    )


def print_summary(results: Sequence[MeasurementResult]) -> None:
    table = Table(title="Results", box=box.ROUNDED)
    table.add_column("Host", style="bold")
    table.add_column("Search")
    table.add_column("Ping", justify="right")
    table.add_column("Download", justify="right")

    for r in results:
        if r.success:
            table.add_row(r.host, r.search, format_latency(r.latency_ms), format_speed(r.kbps))
        else:
            ping = ERROR if is_unreachable(r.latency_ms) else format_latency(r.latency_ms)
            table.add_row(r.host, r.search, f"[red]{ping}[/red]", f"[red]{ERROR}[/red]")

    console.print()
    console.print(table)


def print_history(rows: List[dict]) -> None:
    if not rows:
        console.print("[dim]No history yet.[/dim]")
        return

    table = Table(title="History", box=box.ROUNDED)
    table.add_column("Time", style="dim")
    table.add_column("Host", style="bold")
    table.add_column("Search")
    table.add_column("Ping", justify="right")
    table.add_column("Download", justify="right")

    for row in rows:
        ping = row.get("ping")
        dl = row.get("download")
        table.add_row(
            row["timestamp"],
            row["host"],
            row.get("search") or "",
            format_latency(ping) if ping is not None else ERROR,
            format_speed(dl) if dl is not None else ERROR,
        )
    console.print(table)


# ---------------------------------------------------------------------------
# Progress display
# ---------------------------------------------------------------------------

class ProgressDisplay:
    """Manages a ``rich`` progress bar during a download test."""

    def __init__(self) -> None:
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold]{task.description}"),
            BarColumn(bar_width=40),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TextColumn("[bold cyan]{task.fields[speed]}[/bold cyan]"),
            TimeElapsedColumn(),
            console=console,
            transient=True,
        )
        self._task_id = None
        self._last_speed = 0
        self._last_prog = 0.0

    def start(self, description: str) -> None:
        self.progress.start()
        self._task_id = self.progress.add_task(description, total=100, speed="")
        self._last_speed = 0
        self._last_prog = 0.0

    def update(self, progress: float, kbps: int = 0) -> None:
        if self._task_id is None:
            return
        # Debounce: only update when values change noticeably
        if abs(progress - self._last_prog) < 0.01 and abs(kbps - self._last_speed) < 100:
            return
        speed_str = format_speed(kbps) if kbps > 0 else "..."
        self.progress.update(self._task_id, completed=progress * 100, speed=speed_str)
        self._last_prog = progress
        self._last_speed = kbps

    def stop(self) -> None:
        if self._task_id is not None:
            self.progress.stop()
            self._task_id = None


# ---------------------------------------------------------------------------
# Orchestrator events
# ---------------------------------------------------------------------------

class ConsoleEvents(MeasurementEvents):
    """
    Renders orchestrator events.

    Interactive mode shows candidate tables, latency details and a live
    progress bar; non-interactive mode prints one line per host.
    """

    def __init__(self, interactive: bool = True, verbose: bool = False, candidate_tests: int = 1) -> None:
        self.interactive = interactive
        self.verbose = verbose
        self.candidate_tests = candidate_tests
        self._progress: Optional[ProgressDisplay] = None

    def on_state(self, state: RunState) -> None:
        if self.interactive and state is RunState.RESOLVE_HOSTS:
            console.print("[dim]Resolving servers...[/dim]")

    def on_candidates(self, term: str, ranked: Sequence[ServerCandidate]) -> None:
        if self.verbose and ranked:
            print_candidates(term, ranked, selected=self.candidate_tests)

    def on_term_failed(self, term: str, reason: str) -> None:
        err_console.print(f"[red]Could not find server: {term or '(nearest)'}[/red] [dim]({reason})[/dim]")

    def on_host_start(self, server: ServerCandidate) -> None:
        if self.interactive:
            label = f"{server.sponsor} ({server.host})" if server.sponsor else server.host
            console.print(f"\n[bold]Testing[/bold] {label}")

    def on_latency(self, server: ServerCandidate, latency: LatencyResult) -> None:
        if not self.interactive:
            return
        if latency.reachable:
            console.print(f"  Ping: [bold yellow]{format_latency(latency.latency_ms)}[/bold yellow]")
            if self.verbose:
                print_latency_details(latency)
            self._progress = ProgressDisplay()
            self._progress.start("Downloading")
        else:
            console.print(f"  Ping: [red]{ERROR}[/red]")

    def on_progress(self, server: ServerCandidate, fraction: float, kbps: int) -> None:
        if self._progress is not None:
            self._progress.update(fraction, kbps)

    def on_result(self, result: MeasurementResult) -> None:
        if self._progress is not None:
            self._progress.stop()
            self._progress = None
        line = result_line(result)
        if self.interactive:
            color = "green" if result.success else "red"
            console.print(f"[{color}]{line}[/{color}]")
        else:
            console.print(line, highlight=False)
