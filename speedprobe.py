#!/usr/bin/env python3
"""
speedprobe -- latency and download throughput against the best nearby server.

Usage::

    python speedprobe.py                          # nearest servers
    python speedprobe.py --search "Berlin,Paris"  # best server per term
    python speedprobe.py --server host:8080       # explicit host(s), no discovery
    python speedprobe.py --json                   # JSON to stdout
    python speedprobe.py -o result.json           # save to file
    python speedprobe.py --csv log.csv            # append CSV rows
    python speedprobe.py --db results.db          # store in SQLite
    python speedprobe.py --history                # show past results
    python speedprobe.py --debug                  # settings, raw samples, logs
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from engine.config import PROBE_TRANSPORTS, Settings, load_config, validate
from engine.errors import ConfigurationInvalid
from engine.history import format_history_table, load_history, save_results
from engine.models import RunOutcome
from engine.runner import MeasurementEvents, create_orchestrator
from engine.store import ResultStore
from ui.dashboard import (
    ConsoleEvents,
    configure_logging,
    console,
    err_console,
    print_header,
    print_history,
    print_settings,
    print_summary,
)
from ui.output import append_csv, create_result_json, save_json

logger = logging.getLogger("speedprobe")


# ---------------------------------------------------------------------------
# Settings from config file + flags
# ---------------------------------------------------------------------------

def build_settings(args: argparse.Namespace) -> Settings:
    """Overlay command-line flags on the config file; flags left unset keep config values."""
    settings = load_config(args.config)
    settings = settings.replace(
        download_time=args.download_time,
        download_connections=args.connections,
        buffer_size=args.buffer_size,
        ping_count=args.ping_count,
        servers=args.server,
        search=args.search,
        candidate_count=args.candidate_count,
        candidate_ping_max=args.candidate_ping_max,
        candidate_tests=args.candidate_tests,
        probe_transport=args.transport,
        verify_candidates=args.verify,
        debug=args.debug,
        verbose=args.verbose,
        interactive=args.interactive,
        history=args.save_history,
        db_path=args.db,
    )
    if args.json:
        settings = settings.replace(interactive=False)
    return validate(settings)


# ---------------------------------------------------------------------------
# Core runner
# ---------------------------------------------------------------------------

async def run_speedprobe(
    settings: Settings,
    *,
    json_output: bool = False,
    output_file: Optional[str] = None,
    csv_file: Optional[str] = None,
) -> RunOutcome:
    """Execute one measurement pass and hand the results to every sink."""
    show_ui = settings.interactive and not json_output

    if show_ui:
        print_header()
    if settings.debug:
        print_settings(settings.describe())

    if json_output:
        events = MeasurementEvents()
    else:
        events = ConsoleEvents(
            interactive=show_ui,
            verbose=settings.verbose or settings.debug,
            candidate_tests=settings.candidate_tests,
        )

    async with create_orchestrator(settings, events) as orchestrator:
        outcome = await orchestrator.run()

    if show_ui and outcome.results:
        print_summary(outcome.results)

    # -- Sinks ------------------------------------------------------------------
    if json_output or output_file:
        result_json = create_result_json(outcome)
        if json_output:
            print(json.dumps(result_json, indent=2))
        if output_file:
            save_json(result_json, output_file)
            if show_ui:
                console.print(f"\n[green]Results saved to:[/green] {output_file}")

    if outcome.results:
        if csv_file:
            append_csv(csv_file, outcome)
        if settings.history:
            save_results(outcome.results)
        if settings.db_path:
            with ResultStore(settings.db_path) as store:
                store.add_results(outcome.results)

    return outcome


def show_history(settings: Settings) -> None:
    if settings.db_path:
        with ResultStore(settings.db_path) as store:
            rows = store.fetch_recent()
        print_history([
            {
                "timestamp": r["timestamp"][:16].replace("T", " "),
                "host": r["host"],
                "search": r["search"],
                "ping": r["ping"],
                "download": r["download_speed"],
            }
            for r in rows
        ])
    else:
        print_history(format_history_table(load_history()))


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="speedprobe",
        description="Measure latency and download throughput against the best nearby server",
    )
    # Server selection
    parser.add_argument("--server", action="append", metavar="HOST", help="Test this host (repeatable); skips discovery")
    parser.add_argument("--search", type=str, metavar="TERMS", help="Comma separated server search terms")
    parser.add_argument("--candidate-count", type=int, metavar="N", help="Candidates probed per search term (default: 5)")
    parser.add_argument("--candidate-ping-max", type=int, metavar="N", help="Pings per candidate while ranking (default: 3)")
    parser.add_argument("--candidate-tests", type=int, metavar="N", help="Best candidates measured per term (default: 1)")
    parser.add_argument("--transport", choices=PROBE_TRANSPORTS, help="Latency probe transport (default: icmp)")
    parser.add_argument("--no-verify", dest="verify", action="store_false", default=None, help="Skip the download check while ranking")

    # Test parameters
    parser.add_argument("--download-time", type=int, metavar="MS", help="Download test duration in ms (default: 5000)")
    parser.add_argument("--connections", type=int, metavar="N", help="Concurrent download streams (default: 4)")
    parser.add_argument("--buffer-size", type=int, metavar="BYTES", help="Read buffer size (default: 4096)")
    parser.add_argument("--ping-count", type=int, metavar="N", help="Maximum ping samples per host (default: 20)")

    # Output
    parser.add_argument("--json", "-j", action="store_true", help="Output results as JSON")
    parser.add_argument("--output", "-o", type=str, metavar="FILE", help="Save results to JSON file")
    parser.add_argument("--csv", type=str, metavar="FILE", help="Append results as CSV rows")
    parser.add_argument("--db", type=str, metavar="FILE", help="Store results in a SQLite database")
    parser.add_argument("--no-history", dest="save_history", action="store_false", default=None, help="Do not append to the history file")
    parser.add_argument("--history", action="store_true", help="Show past results and exit")
    parser.add_argument("--non-interactive", dest="interactive", action="store_false", default=None, help="Plain one-line-per-host output")
    parser.add_argument("--verbose", "-v", action="store_true", default=None, help="Show candidate tables and info logs")
    parser.add_argument("--debug", action="store_true", default=None, help="Show settings, raw samples and debug logs")
    parser.add_argument("--config", type=str, metavar="FILE", help="JSON config file")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = create_parser().parse_args(argv)

    try:
        settings = build_settings(args)
    except ConfigurationInvalid as exc:
        err_console.print(f"[red]Error: {exc}[/red]")
        return 1

    configure_logging(debug=settings.debug, verbose=settings.verbose)

    if args.history:
        show_history(settings)
        return 0

    try:
        outcome = asyncio.run(
            run_speedprobe(
                settings,
                json_output=args.json,
                output_file=args.output,
                csv_file=args.csv,
            )
        )
    except KeyboardInterrupt:
        err_console.print("\n[yellow]Test cancelled by user[/yellow]")
        return 130
    except (IOError, OSError) as exc:
        logger.debug("Run aborted", exc_info=True)
        err_console.print(f"\n[red]Error: {exc}[/red]")
        return 1

    return outcome.exit_code


if __name__ == "__main__":
    sys.exit(main())
