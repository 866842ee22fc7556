"""Analyse mode for showing the call graph of the entry routine.

Nothing is written; the mode prints the tree of routines that would be
timed and the probe each of them gets.
"""

import argparse
from pathlib import Path

from tqdm.auto import tqdm

from timetrack_cli.models import ModificationEvent
from timetrack_cli.pipeline import AnalysisResult, run_analysis
from timetrack_cli.profile import apply_overrides, load_profile
from timetrack_cli.utilities import create_ascii_table, format_call_tree


def add_target_arguments(parser: argparse.ArgumentParser) -> None:
    """Add the arguments selecting what to analyse.

    Every option defaults to None so the profile value is used unless it is
    given on the command line.
    """
    parser.add_argument(
        "--class",
        "-c",
        dest="class_name",
        type=str,
        help="Class declaring the entry routine (or a module name for a "
        "module level function).",
        default=None,
    )
    parser.add_argument(
        "--method",
        "-m",
        dest="method_name",
        type=str,
        help="Name of the entry routine.",
        default=None,
    )
    parser.add_argument(
        "--packages",
        type=str,
        help="Comma-separated module prefixes owned by the project.",
        default=None,
    )
    parser.add_argument(
        "--exclude",
        type=str,
        help="Comma-separated fnmatch patterns of routines never timed.",
        default=None,
    )
    parser.add_argument(
        "--no-recursive",
        dest="recursive",
        action="store_const",
        const=False,
        help="Only follow the entry routine's direct calls.",
        default=None,
    )
    parser.add_argument(
        "--fallback",
        dest="ambiguous_fallback",
        action="store_const",
        const=True,
        help="Resolve calls on untyped attributes by a unique method name.",
        default=None,
    )


def add_arguments(parser: argparse.ArgumentParser) -> None:
    """Add arguments for the analyse mode."""
    add_target_arguments(parser)


def make_sink(verbose: bool = False):
    """Return a sink printing warnings, and every event when verbose."""

    def _sink(event: ModificationEvent) -> None:
        if verbose or event.kind == "warning":
            tqdm.write(str(event))

    return _sink


def print_analysis(analysis: AnalysisResult) -> None:
    """Print the call tree and the routine table of an analysis."""
    print()
    print(f" Entry routine: {analysis.entry.display_name}")
    print(f" Probes declared in: {analysis.home_scope.display_name}")
    print()
    print("\n".join(format_call_tree(analysis.graph)))
    print()

    root = Path(analysis.model.root)
    rows = []
    for entry, probe in zip(
        analysis.entries, analysis.registry.probes.values()
    ):
        file = entry.file
        if file.is_relative_to(root):
            file = file.relative_to(root)
        rows.append([entry.routine, entry.scope, str(file), probe.probe_name])

    print(
        create_ascii_table(
            ["Routine", "Scope", "File", "Probe"],
            rows,
            title=f"{len(rows)} ROUTINES",
        )
    )


def run(args: argparse.Namespace) -> None:
    """Execute the analyse mode."""
    profile = apply_overrides(load_profile(), args)
    analysis = run_analysis(
        profile, sink=make_sink(getattr(args, "verbose", False))
    )
    print_analysis(analysis)
