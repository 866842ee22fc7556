"""Command line parsing for timetrack-cli.

One command line chains any number of modes, each followed by its own
options::

    timetrack-cli -v analyse -c OrderService -m run inject --dry-run

The shared options (``--verbose``, ``--project-dir``) are accepted before
the first mode and inside every mode section. A value given inside a
section wins over one given up front.
"""

import argparse
import sys
from pathlib import Path
from typing import List, Sequence, Tuple

from timetrack_cli.modes import AVAILABLE_MODES, MODE_MODULES, Mode
from timetrack_cli.profile import load_profile

PROG = "timetrack-cli"

EXAMPLES = [
    "timetrack-cli profile --init",
    "timetrack-cli analyse -c OrderService -m run",
    "timetrack-cli inject --dry-run",
    "timetrack-cli inject -o ../timed report timing.log",
]

Section = Tuple[Mode, List[str]]


def _shared_options() -> argparse.ArgumentParser:
    """Return a parent parser with the options every mode accepts."""
    profile = load_profile()
    current = profile.project_dir if profile else None

    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log every modification as it is made.",
    )
    parser.add_argument(
        "--project-dir",
        type=Path,
        help=f"Project to instrument (overrides profile: {current}).",
        default=None,
    )
    return parser


def _summary(mode: Mode) -> str:
    """First sentence of a mode module's docstring."""
    doc = MODE_MODULES[mode].__doc__
    if not doc:
        return f"{mode.title()} mode"
    return doc.split(".")[0]


def _main_parser(shared: argparse.ArgumentParser) -> argparse.ArgumentParser:
    modes = "\n".join(
        f"  {mode:<15} {_summary(mode)}" for mode in AVAILABLE_MODES
    )
    examples = "\n".join(f"  {example}" for example in EXAMPLES)
    return argparse.ArgumentParser(
        prog=PROG,
        usage=(
            f"{PROG} [-v] [--project-dir DIR] "
            "<mode> [mode args] [<mode> [mode args]] ..."
        ),
        description=(
            "timetrack-cli: Instrument Python projects with timing probes"
        ),
        epilog=(
            f"available modes:\n{modes}\n\n"
            f"examples:\n{examples}\n\n"
            f"For mode-specific help: {PROG} <mode> --help"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        parents=[shared],
    )


def split_sections(argv: Sequence[str]) -> Tuple[List[str], List[Section]]:
    """Cut a command line at every mode name.

    Args:
        argv: Command-line arguments, without the program name.

    Returns:
        The arguments before the first mode, and one ``(mode, args)``
        section per mode in the order given.
    """
    leading: List[str] = []
    sections: List[Section] = []
    for arg in argv:
        if arg in AVAILABLE_MODES:
            sections.append((arg, []))
        elif sections:
            sections[-1][1].append(arg)
        else:
            leading.append(arg)
    return leading, sections


class MultiModeCLIArgs:
    """The parsed command line: shared options plus one namespace per mode.

    Attributes:
        global_args: Shared options given before the first mode.
        modes: ``(mode, namespace)`` pairs in command-line order. Every
            namespace also carries the shared options.
    """

    def __init__(self, argv: Sequence[str] | None = None) -> None:
        """Parse a command line.

        Args:
            argv: Command-line arguments to parse. If None, uses sys.argv.

        Raises:
            argparse.ArgumentTypeError: If something other than a shared
                option precedes the first mode.
        """
        if argv is None:
            argv = sys.argv[1:]

        shared = _shared_options()
        leading, sections = split_sections(list(argv))

        # --help before any mode prints the overview and exits here
        self.global_args, unknown = _main_parser(shared).parse_known_args(
            leading
        )
        if unknown:
            raise argparse.ArgumentTypeError(
                f"Unknown argument '{unknown[0]}'. Expected one "
                f"of: {', '.join(AVAILABLE_MODES)}"
            )

        self.modes: List[Tuple[Mode, argparse.Namespace]] = []
        for mode, mode_argv in sections:
            parser = argparse.ArgumentParser(
                prog=f"{PROG} {mode}", parents=[shared]
            )
            MODE_MODULES[mode].add_arguments(parser)
            mode_args = parser.parse_args(mode_argv)
            for name, value in vars(self.global_args).items():
                if getattr(mode_args, name, None) in (None, False):
                    setattr(mode_args, name, value)
            self.modes.append((mode, mode_args))


def parse_multimode_args(
    argv: Sequence[str] | None = None,
) -> MultiModeCLIArgs:
    """Parse the command line of timetrack-cli.

    Args:
        argv: Command-line arguments to parse. If None, uses sys.argv.

    Returns:
        MultiModeCLIArgs: The parsed modes.
    """
    return MultiModeCLIArgs(argv)
