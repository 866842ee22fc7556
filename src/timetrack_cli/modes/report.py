"""Report mode for reading back the report of an instrumented run."""

import argparse
from pathlib import Path

from timetrack_cli.profile import load_profile
from timetrack_cli.report import DEPTH_MARKER, parse_report
from timetrack_cli.utilities import create_ascii_table


def add_arguments(parser: argparse.ArgumentParser) -> None:
    """Add arguments for the report mode."""
    parser.add_argument(
        "report",
        nargs="?",
        type=Path,
        help="Report file to read (defaults to the profile's report_file).",
        default=None,
    )
    parser.add_argument(
        "--all",
        "-a",
        action="store_true",
        help="Show every report in the file, not only the last one.",
        default=False,
    )


def run(args: argparse.Namespace) -> None:
    """Execute the report mode.

    Raises:
        ValueError: If no report file is given or configured.
        FileNotFoundError: If the report file does not exist.
    """
    path = args.report
    if path is None:
        path = load_profile().report_file
    if path is None:
        raise ValueError(
            "No report file given and none configured in the profile."
        )
    path = Path(path).expanduser()
    if not path.exists():
        raise FileNotFoundError(f"Report file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        entries = parse_report(f.read())

    if not entries:
        print(f"No timing lines found in {path}.")
        return

    # Group the lines by report
    grouped: dict[int, tuple[str, list]] = {}
    for entry in entries:
        grouped.setdefault(entry.report, (entry.entry, []))[1].append(entry)
    reports = list(grouped.values())

    if not args.all:
        reports = reports[-1:]

    for label, lines in reports:
        rows = [
            [
                DEPTH_MARKER * (e.depth - 1) + e.label,
                e.kind.value,
                e.elapsed_ms,
                e.elapsed,
            ]
            for e in lines
        ]
        print(
            create_ascii_table(
                ["Name", "Kind", "ms", "Elapsed"],
                rows,
                title=label or "REPORT",
            )
        )
