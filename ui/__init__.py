"""UI layer -- Rich console presentation and output formatters."""

from .dashboard import (
    ConsoleEvents,
    ProgressDisplay,
    configure_logging,
    console,
    format_host_line,
    print_candidates,
    print_header,
    print_history,
    print_settings,
    print_summary,
    result_line,
)
from .output import (
    append_csv,
    create_result_json,
    format_csv_header,
    format_csv_row,
    save_json,
)

__all__ = [
    "ConsoleEvents",
    "ProgressDisplay",
    "append_csv",
    "configure_logging",
    "console",
    "create_result_json",
    "format_csv_header",
    "format_csv_row",
    "format_host_line",
    "print_candidates",
    "print_header",
    "print_history",
    "print_settings",
    "print_summary",
    "result_line",
    "save_json",
]
