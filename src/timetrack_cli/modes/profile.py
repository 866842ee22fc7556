"""Profile mode for configuring timetrack-cli settings and profiles."""

import argparse
from dataclasses import asdict

from timetrack_cli.profile import (
    PROFILE_FILE,
    _load_all_profiles,
    _load_profile,
    _save_profile,
    get_cli_profiles,
)
from timetrack_cli.utilities import ascii_art, create_ascii_table


def add_arguments(parser: argparse.ArgumentParser) -> None:
    """Add arguments for the profile mode."""
    # initial profile
    parser.add_argument(
        "--init",
        "-i",
        action="store_true",
        help="Run the initial configuration to setup the default profile.",
        default=False,
    )

    # Clear
    parser.add_argument(
        "--clear",
        "-c",
        action="store_true",
        help="Wipe all timetrack-cli profiles.",
        default=False,
    )

    # Save current as default
    parser.add_argument(
        "--override",
        "-o",
        action="store_true",
        help="Save the current profile as the default profile.",
        default=False,
    )

    # New profile with a given name
    parser.add_argument(
        "--new",
        "-n",
        type=str,
        help="Create a new profile with the given name.",
        default=None,
    )

    # Switch to a different profile
    parser.add_argument(
        "--switch",
        "-s",
        type=str,
        help="Switch to the profile with the given name.",
        default=None,
    )

    # Display the current profile
    parser.add_argument(
        "--show",
        "-S",
        action="store_true",
        help="Display the current profile.",
        default=False,
    )

    # List all profiles
    parser.add_argument(
        "--list",
        "-l",
        action="store_true",
        help="List all available profiles.",
        default=False,
    )

    # Edit a profile
    parser.add_argument(
        "--edit",
        "-e",
        help="Edit a profile.",
        type=str,
        default=None,
    )


def run(args: argparse.Namespace) -> None:
    """Execute the profile mode."""
    if args.init:
        initial_profile()
    elif args.clear:
        clear_profiles()
    elif args.override:
        save_current_profile_as_default()
    elif args.new is not None:
        new_profile(args.new)
    elif args.switch is not None:
        switch_profile(args.switch)
    elif args.edit is not None:
        edit_profile(args.edit)
    if args.show:
        display_profile()
    if args.list:
        list_profiles()


def initial_profile() -> None:
    """Configure timetrack-cli by collecting user input."""
    # Print the ASCII art
    print("\nWelcome to timetrack-cli!\n")
    print("\n".join(ascii_art))
    print()
    print("Let's set up your profile...\n")

    # Use an existing current profile as defaults
    current = _load_all_profiles().get("Current", {})

    profile = get_cli_profiles(
        default_project=current.get("project_dir"),
        default_class=current.get("class_name", ""),
        default_method=current.get("method_name", ""),
        default_packages=current.get("packages", ""),
    )

    # Save the profile as both the default and the current one
    _save_profile(profile, "Default")
    _save_profile(profile, "Current")

    print("Profile saved to", PROFILE_FILE)


def clear_profiles() -> None:
    """Clear the timetrack-cli profiles.

    This will delete the profiles file if it exists.
    """
    # Make sure the user is sure they want to do this
    confirm = input(
        "Are you sure you want to clear all timetrack-cli profiles?"
        " This action cannot be undone. (y/N): "
    )
    if confirm.lower() != "y":
        print("Aborting...")
        return

    # Delete the profile file if it exists
    if PROFILE_FILE.exists():
        PROFILE_FILE.unlink()

    print("All timetrack-cli profiles cleared.")
    _load_profile.cache_clear()


def save_current_profile_as_default() -> None:
    """Save the current profile as the default profile."""
    profile = _load_profile()
    _save_profile(profile, "Default")


def new_profile(key: str) -> None:
    """Create a new profile with the given key.

    Args:
        key: The key under which to save the new profile.

    Raises:
        ValueError: If the name is empty or already taken.
    """
    existing_profiles = _load_all_profiles()
    if len(key) == 0:
        raise ValueError("Profile name cannot be empty.")
    if key in existing_profiles:
        raise ValueError(f"Profile '{key}' already exists.")

    # Unpack the default profile to use as defaults
    default_profile = existing_profiles.get("Default", {})

    profile = get_cli_profiles(
        default_project=default_profile.get("project_dir"),
        default_packages=default_profile.get("packages", ""),
    )
    _save_profile(profile, key)


def switch_profile(key: str) -> None:
    """Switch the current profile to the one with the given key.

    Args:
        key: The key of the profile to switch to.

    Raises:
        ValueError: If there is no such profile.
    """
    existing_profiles = _load_all_profiles()
    if key not in existing_profiles:
        raise ValueError(f"Profile '{key}' does not exist.")

    # Load the profile and save it as current
    profile = _load_profile(key)
    _save_profile(profile, "Current")

    print("Switched to:")
    display_profile(print_header=False, title=f"PROFILE: {key}")


def display_profile(
    print_header: bool = True,
    title: str = "CURRENT PROFILE",
) -> None:
    """Display the current timetrack-cli profile.

    Args:
        print_header: Whether to print the ASCII art header.
        title: Title to display above the profile table.
    """
    if print_header:
        print()
        print("\n".join(ascii_art))
        print()
        print(" Current timetrack-cli profile:\n")

    profile = _load_profile()

    headers = ["Key", "Value"]
    rows = [[key, str(value)] for key, value in asdict(profile).items()]

    print(create_ascii_table(headers, rows, title=title))


def list_profiles() -> None:
    """List all available timetrack-cli profiles."""
    print(" Available timetrack-cli profiles:\n")

    profiles = _load_all_profiles()

    if len(profiles) == 0:
        print("No profiles found.")
    else:
        for profile in profiles.keys():
            # Skip Current
            if profile == "Current":
                continue
            print(f" - {profile}")
    print()


def edit_profile(key: str) -> None:
    """Edit a timetrack-cli profile interactively.

    Args:
        key: The key of the profile to edit.
    """
    profile = _load_profile(key)
    print(f"Editing profile '{key}'. Press Enter to keep existing values.\n")
    updated_profile = get_cli_profiles(
        default_project=str(profile.project_dir)
        if profile.project_dir
        else None,
        default_class=profile.class_name,
        default_method=profile.method_name,
        default_packages=profile.packages,
        default_output=str(profile.output_dir) if profile.output_dir else None,
        default_overwrite=profile.overwrite_original,
        default_recursive=profile.recursive,
    )

    # Keep the settings that are not collected interactively
    updated_profile.report_variable = profile.report_variable
    updated_profile.report_file = profile.report_file
    updated_profile.generate_report = profile.generate_report
    updated_profile.exclude = profile.exclude
    updated_profile.ambiguous_fallback = profile.ambiguous_fallback
    updated_profile.jobs = profile.jobs

    _save_profile(updated_profile, key=key)
    print("\nProfile updated successfully.")
