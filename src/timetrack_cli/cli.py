"""The main module containing the timetrack-cli tool."""

from timetrack_cli.modes import MODE_MODULES
from timetrack_cli.multi_mode_args import MultiModeCLIArgs
from timetrack_cli.profile import load_profile


def main(argv: list[str] | None = None) -> None:
    """Run the timetrack-cli command-line interface.

    Args:
        argv: The command-line arguments to parse. If None, uses sys.argv.
    """
    # Load the profile first, this will cache it for the modes
    _ = load_profile()

    # Parse the multi-mode command-line arguments
    multi_args = MultiModeCLIArgs(argv)

    # Execute each mode in sequence
    for mode_name, args in multi_args.modes:
        mode_module = MODE_MODULES[mode_name]
        mode_module.run(args)
