"""Mode definitions and constants for timetrack-cli."""

from typing import Literal

from . import analyse, inject, profile, report

# Available modes for the timetrack-cli tool
AVAILABLE_MODES = [
    "profile",
    "analyse",
    "inject",
    "report",
]

# Type hint for mode names
Mode = Literal[
    "profile",
    "analyse",
    "inject",
    "report",
]

# Mapping of mode names to their modules
MODE_MODULES = {
    "profile": profile,
    "analyse": analyse,
    "inject": inject,
    "report": report,
}
