"""Inject mode for instrumenting a project with timing probes.

Analyses the entry routine, rewrites every module its call graph touches
and writes them either in place or to a mirrored copy of the project.
"""

import argparse
from collections import Counter
from pathlib import Path

from timetrack_cli.modes.analyse import (
    add_target_arguments,
    make_sink,
    print_analysis,
)
from timetrack_cli.pipeline import run_analysis, run_rewrite, write_units
from timetrack_cli.profile import apply_overrides, load_profile
from timetrack_cli.utilities import create_ascii_table, unified_diff


def add_arguments(parser: argparse.ArgumentParser) -> None:
    """Add arguments for the inject mode."""
    add_target_arguments(parser)

    parser.add_argument(
        "--output-dir",
        "-o",
        type=Path,
        help="Directory the instrumented project is written to.",
        default=None,
    )
    parser.add_argument(
        "--overwrite",
        dest="overwrite_original",
        action="store_const",
        const=True,
        help="Overwrite the original modules in place.",
        default=None,
    )
    parser.add_argument(
        "--report-variable",
        type=str,
        help="Local variable collecting the report lines.",
        default=None,
    )
    parser.add_argument(
        "--report-file",
        type=Path,
        help="File the instrumented program appends its report to.",
        default=None,
    )
    parser.add_argument(
        "--no-report",
        dest="generate_report",
        action="store_const",
        const=False,
        help="Do not add the report block to the entry routine.",
        default=None,
    )
    parser.add_argument(
        "--jobs",
        "-j",
        type=int,
        help="Number of threads used to rewrite modules.",
        default=None,
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the changes as a diff instead of writing them.",
        default=False,
    )


def run(args: argparse.Namespace) -> None:
    """Execute the inject mode."""
    verbose = getattr(args, "verbose", False)
    profile = apply_overrides(load_profile(), args)
    sink = make_sink(verbose)

    analysis = run_analysis(profile, sink=sink)
    if verbose:
        print_analysis(analysis)

    result = run_rewrite(analysis, profile, sink=sink, progress=True)

    if args.dry_run:
        for unit in result.units:
            print(
                unified_diff(unit.unit.source, unit.source, unit.unit.rel_path)
            )
        written = []
    else:
        written = write_units(result.units, profile, sink=sink)

    counts = Counter(event.kind for event in result.events)
    rows = [
        ["Routines", len(analysis.registry)],
        ["Loop probes", len(analysis.registry.loops)],
        ["Wrapped calls", counts["call"]],
        ["Wrapped returns", counts["return"]],
        ["Wrapped loops", counts["loop"]],
        ["Modules changed", len(result.units)],
        ["Files written", len(written)],
        ["Warnings", counts["warning"]],
    ]
    print(create_ascii_table(["", "Count"], rows, title="INSTRUMENTATION"))

    if written and not profile.overwrite_original:
        print(f"Instrumented project written to {profile.output_dir}")
