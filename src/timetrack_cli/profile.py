"""A module containing tools for permanently configuring timetrack-cli."""

from dataclasses import asdict, dataclass, fields, replace
from functools import lru_cache
from pathlib import Path
from typing import Optional

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import PathCompleter
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.styles import Style
from prompt_toolkit.validation import ValidationError, Validator
from ruamel.yaml import YAML

from timetrack_cli.call_graph import DEFAULT_EXCLUDES

# Define the path to the profile file
PROFILE_FILE = Path.home() / ".timetrack-cli" / "profiles.yaml"


@dataclass()
class TimeTrackProfile:
    """A configuration for timetrack-cli.

    This contains everything needed to analyse and instrument one project
    and can be used in timetrack-cli's various modes.

    Attributes:
        project_dir: Path to the project to instrument.
        packages: Comma-separated module prefixes treated as the project's
            own code (empty for every module under project_dir).
        class_name: Class declaring the entry routine (empty, or a module
            name, for a module level function).
        method_name: Name of the entry routine.
        report_variable: Local variable collecting the report lines.
        report_file: File the report is appended to on every run.
        recursive: Follow calls beyond the entry routine's direct calls.
        overwrite_original: Write instrumented modules in place.
        output_dir: Where to mirror the instrumented project otherwise.
        generate_report: Add the report block to the entry routine.
        exclude: Comma-separated fnmatch patterns of routines never timed.
        ambiguous_fallback: Resolve calls on untyped attribute receivers
            to the only project method with the same name.
        jobs: Worker threads used to rewrite modules.
    """

    project_dir: Path | None
    packages: str = ""
    class_name: str = ""
    method_name: str = ""
    report_variable: str = "timing_report"
    report_file: Optional[Path] = None
    recursive: bool = True
    overwrite_original: bool = False
    output_dir: Optional[Path] = None
    generate_report: bool = True
    exclude: str = ", ".join(DEFAULT_EXCLUDES)
    ambiguous_fallback: bool = False
    jobs: int = 1

    @property
    def package_list(self) -> list[str]:
        """Return the packages as a list."""
        return split_list(self.packages)

    @property
    def exclude_list(self) -> list[str]:
        """Return the exclusion patterns as a list."""
        return split_list(self.exclude)


def split_list(value: str | list | tuple | None) -> list[str]:
    """Split a comma-separated string into its non-empty items.

    Args:
        value: The string (a list or tuple is also accepted).

    Returns:
        list[str]: The stripped items.
    """
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        items = [str(v) for v in value]
    else:
        items = str(value).split(",")
    return [item.strip() for item in items if item.strip()]


def parse_bool(value: str | bool) -> bool:
    """Interpret a yes/no answer.

    Args:
        value: The answer, e.g. "y", "yes", "true", "n", "0".

    Returns:
        bool: The answer as a boolean.

    Raises:
        ValueError: If the answer is not recognised.
    """
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("y", "yes", "true", "1", "on"):
        return True
    if text in ("n", "no", "false", "0", "off"):
        return False
    raise ValueError(f"Expected yes or no, got '{value}'.")


class PathExistsValidator(Validator):
    """Validator to check if a given path exists."""

    def validate(self, document):
        """Validate that the path exists."""
        p = Path(document.text).expanduser()
        if not p.exists():
            raise ValidationError(
                message="Path does not exist.",
                cursor_position=len(document.text),
            )


class IdentifierValidator(Validator):
    """Validator to check that the answer is a valid Python name."""

    def validate(self, document):
        """Validate that the text is an identifier."""
        if not document.text.strip().isidentifier():
            raise ValidationError(
                message="Must be a valid Python identifier.",
                cursor_position=len(document.text),
            )


class YesNoValidator(Validator):
    """Validator accepting the answers understood by `parse_bool`."""

    def validate(self, document):
        """Validate a yes/no answer."""
        try:
            parse_bool(document.text)
        except ValueError:
            raise ValidationError(
                message="Answer y or n.",
                cursor_position=len(document.text),
            ) from None


# ---------- prompt_toolkit styling and key bindings ----------

PTK_STYLE = Style.from_dict(
    {
        "completion-menu": "bg:#2b2e3b",
        "completion-menu.completion": "bg:#2b2e3b #c0caf5",
        "completion-menu.completion.current": "bg:#3b4252 #ffffff",
        "scrollbar.background": "bg:#3b4252",
        "scrollbar.button": "bg:#ffffff",
        "prompt": "bold",
    }
)

KB = KeyBindings()


@KB.add("enter")
def _(event):
    """Enter accepts current completion if menu is open, otherwise submits."""
    buf = event.current_buffer
    if getattr(buf, "completer", None) is not None and buf.complete_state:
        comp = buf.complete_state.current_completion
        if comp is not None:
            buf.apply_completion(comp)
    else:
        buf.validate_and_handle()


@KB.add("tab")
def _(event):
    """Tab opens/cycles completions, if the current prompt has a completer."""
    buf = event.current_buffer
    if getattr(buf, "completer", None) is not None:
        if buf.complete_state:
            buf.complete_next()
        else:
            buf.start_completion(select_first=True)


def _yes_no(flag: bool) -> str:
    return "y" if flag else "n"


def get_cli_profiles(
    default_project: str | None = None,
    default_class: str = "",
    default_method: str = "",
    default_packages: str = "",
    default_output: str | None = None,
    default_overwrite: bool = False,
    default_recursive: bool = True,
) -> TimeTrackProfile:
    """Interactively collect profile values for timetrack-cli.

    The project directory prompt has completion + validation. While a
    completion menu is visible on it:
      - Enter applies the highlighted completion and continues editing.
      - Enter submits only when the completion menu is not open.
    Other prompts behave normally and submit on Enter.
    """
    # Ensure path inputs are either str or None
    default_project = (
        default_project if default_project is None else str(default_project)
    )
    default_output = (
        default_output if default_output is None else str(default_output)
    )

    # Path completer for directory paths
    path_completer = PathCompleter(expanduser=True, only_directories=True)

    # Separate sessions so completers/validators do not leak.
    path_session: PromptSession[str] = PromptSession(
        style=PTK_STYLE,
        key_bindings=KB,
        complete_while_typing=False,
        reserve_space_for_menu=8,
    )
    text_session: PromptSession[str] = PromptSession(
        style=PTK_STYLE,
        complete_while_typing=False,
    )

    # --- Path prompt with validation and completion ---
    project_dir = path_session.prompt(
        [("class:prompt", "Project directory: ")],
        default=(default_project or ""),
        completer=path_completer,
        validator=PathExistsValidator(),
        validate_while_typing=False,
    ).strip()

    # --- Plain prompts (no completer) ---
    packages = text_session.prompt(
        [("class:prompt", "Project packages (comma-separated, optional): ")],
        default=default_packages,
    ).strip()

    class_name = text_session.prompt(
        [("class:prompt", "Entry class (empty for a module function): ")],
        default=default_class,
    ).strip()

    method_name = text_session.prompt(
        [("class:prompt", "Entry method: ")],
        default=default_method,
        validator=IdentifierValidator(),
        validate_while_typing=False,
    ).strip()

    recursive = text_session.prompt(
        [("class:prompt", "Follow calls recursively? (y/n): ")],
        default=_yes_no(default_recursive),
        validator=YesNoValidator(),
        validate_while_typing=False,
    ).strip()

    overwrite = text_session.prompt(
        [("class:prompt", "Overwrite the original files? (y/n): ")],
        default=_yes_no(default_overwrite),
        validator=YesNoValidator(),
        validate_while_typing=False,
    ).strip()

    # Convert to absolute paths
    project_path = Path(project_dir).expanduser().resolve()

    output_path = None
    if not parse_bool(overwrite):
        output_dir = path_session.prompt(
            [("class:prompt", "Output directory: ")],
            default=(
                default_output
                or str(project_path.parent / f"{project_path.name}_timed")
            ),
            completer=path_completer,
            validate_while_typing=False,
        ).strip()
        output_path = Path(output_dir).expanduser().resolve()

    return TimeTrackProfile(
        project_dir=project_path,
        packages=packages,
        class_name=class_name,
        method_name=method_name,
        recursive=parse_bool(recursive),
        overwrite_original=parse_bool(overwrite),
        output_dir=output_path,
    )


def _profile_from_dict(profile_data: dict) -> TimeTrackProfile:
    """Build a profile from its YAML representation."""
    defaults = TimeTrackProfile(project_dir=None)

    def _path(key):
        value = profile_data.get(key)
        return Path(value) if value else None

    return TimeTrackProfile(
        project_dir=_path("project_dir"),
        packages=str(profile_data.get("packages", defaults.packages) or ""),
        class_name=str(profile_data.get("class_name", "") or ""),
        method_name=str(profile_data.get("method_name", "") or ""),
        report_variable=str(
            profile_data.get("report_variable", defaults.report_variable)
        ),
        report_file=_path("report_file"),
        recursive=parse_bool(profile_data.get("recursive", True)),
        overwrite_original=parse_bool(
            profile_data.get("overwrite_original", False)
        ),
        output_dir=_path("output_dir"),
        generate_report=parse_bool(profile_data.get("generate_report", True)),
        exclude=str(profile_data.get("exclude", defaults.exclude) or ""),
        ambiguous_fallback=parse_bool(
            profile_data.get("ambiguous_fallback", False)
        ),
        jobs=int(profile_data.get("jobs", 1)),
    )


@lru_cache(maxsize=None)
def _load_profile(key=None) -> TimeTrackProfile:
    """Load the timetrack-cli profile from the profile file.

    Args:
        key: Name of the profile to load. Defaults to the current one.

    Returns:
        TimeTrackProfile: The loaded profile.
    """
    # Return an empty profile if the profile file does not yet exist
    if not PROFILE_FILE.exists():
        return TimeTrackProfile(project_dir=None)

    yaml = YAML()
    yaml.preserve_quotes = True
    with open(PROFILE_FILE, "r") as f:
        profile_data = yaml.load(f)

    # If we don't have a profile yet return an empty one
    if profile_data is None:
        return TimeTrackProfile(project_dir=None)

    # If key is None return the current profile
    if key is None:
        profile_data = profile_data.get("Current", {})
    else:
        profile_data = profile_data.get(key, {})

    return _profile_from_dict(dict(profile_data or {}))


def _load_all_profiles() -> dict[str, dict]:
    """Load all profiles from the timetrack-cli profile file.

    Returns:
        dict[str, dict]: A dictionary of all profiles in the profile
            file.
    """
    # Load existing profile handling edge cases
    if PROFILE_FILE.exists():
        yaml = YAML()
        yaml.preserve_quotes = True
        with open(PROFILE_FILE, "r") as f:
            all_profile_data = yaml.load(f)
        if all_profile_data is None:  # Handle case where the file is empty
            all_profile_data = {}
    else:
        all_profile_data = {}

    return all_profile_data


def load_profile() -> TimeTrackProfile:
    """Load the current timetrack-cli profile.

    This function caches the result to avoid reloading the profile
    multiple times.

    Returns:
        TimeTrackProfile: The loaded profile.
    """
    return _load_profile()


def profile_to_dict(profile: TimeTrackProfile) -> dict:
    """Return the YAML representation of a profile (paths as strings)."""
    data = asdict(profile)
    for k, v in data.items():
        if isinstance(v, Path):
            data[k] = str(v)
    return data


def _save_profile(profile: TimeTrackProfile, key: str = "Current") -> None:
    """Save the timetrack-cli profile to the profile file.

    Args:
        profile: The profile to save.
        key: The key under which to save the profile. Defaults to
             "Current".
    """
    # Load existing profile
    all_profile_data = _load_all_profiles()

    # Set the contents under the given key
    all_profile_data[key] = profile_to_dict(profile)

    # Write back to the profile file
    PROFILE_FILE.parent.mkdir(parents=True, exist_ok=True)
    yaml = YAML()
    yaml.preserve_quotes = True
    with open(PROFILE_FILE, "w") as f:
        yaml.dump(all_profile_data, f)

    # Clear the cached profile
    _load_profile.cache_clear()


def update_current_profile_value(
    key: str, value: str | float | int | bool | Path | None
) -> None:
    """Update a single value in the current profile.

    Args:
        key: The key to update.
        value: The new value.

    Raises:
        ValueError: If the profile has no such key.
    """
    if key not in {f.name for f in fields(TimeTrackProfile)}:
        raise ValueError(f"Unknown profile key '{key}'.")

    # Get the current profile
    profile = load_profile()

    # Update the value
    setattr(profile, key, value)

    # Save the updated profile
    _save_profile(profile, "Current")


def apply_overrides(profile: TimeTrackProfile, args) -> TimeTrackProfile:
    """Return a copy of a profile with command line values applied.

    Every attribute of `args` named like a profile field and not None
    replaces the profile's value.

    Args:
        profile: The stored profile.
        args: The parsed arguments of a mode.

    Returns:
        TimeTrackProfile: The profile to run with.
    """
    overrides = {}
    for f in fields(TimeTrackProfile):
        value = getattr(args, f.name, None)
        if value is not None:
            overrides[f.name] = value
    return replace(profile, **overrides)
