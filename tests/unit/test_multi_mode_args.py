"""Tests for the multi-mode argument parser."""

import argparse
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

from timetrack_cli.multi_mode_args import (
    MultiModeCLIArgs,
    parse_multimode_args,
    split_sections,
)


@pytest.fixture(autouse=True)
def _isolated_profile(profile_file):
    """Never read the real profile store."""
    return profile_file


def test_no_modes():
    """Test an empty command line."""
    args = MultiModeCLIArgs([])

    assert args.modes == []
    assert args.global_args.verbose is False
    assert args.global_args.project_dir is None


def test_single_mode_analyse():
    """Test parsing a single analyse mode."""
    args = MultiModeCLIArgs(["analyse", "-c", "Svc", "-m", "run"])

    assert len(args.modes) == 1
    mode, mode_args = args.modes[0]
    assert mode == "analyse"
    assert mode_args.class_name == "Svc"
    assert mode_args.method_name == "run"
    assert mode_args.verbose is False


def test_chained_modes():
    """Test that several modes run in the given order."""
    args = MultiModeCLIArgs(
        [
            "analyse",
            "-c",
            "Svc",
            "-m",
            "run",
            "inject",
            "--dry-run",
            "report",
            "timing.log",
        ]
    )

    assert [mode for mode, _ in args.modes] == [
        "analyse",
        "inject",
        "report",
    ]
    assert args.modes[0][1].class_name == "Svc"
    assert args.modes[1][1].dry_run is True
    assert args.modes[1][1].class_name is None
    assert args.modes[2][1].report == Path("timing.log")


def test_global_args():
    """Test that global arguments reach every mode."""
    args = MultiModeCLIArgs(
        [
            "--verbose",
            "--project-dir",
            "/srv/app",
            "analyse",
            "-m",
            "run",
            "report",
        ]
    )

    assert args.global_args.verbose is True
    for _, mode_args in args.modes:
        assert mode_args.verbose is True
        assert mode_args.project_dir == Path("/srv/app")


def test_global_args_after_mode():
    """Test that global arguments may follow a mode."""
    args = MultiModeCLIArgs(["analyse", "-m", "run", "-v"])

    assert args.modes[0][1].verbose is True


def test_help_arg(capsys):
    """Test the global help."""
    with pytest.raises(SystemExit) as exc:
        MultiModeCLIArgs(["--help"])

    assert exc.value.code == 0
    out = capsys.readouterr().out
    assert "timetrack-cli: Instrument Python projects with timing probes" in (
        out
    )
    for mode in ("profile", "analyse", "inject", "report"):
        assert mode in out
    assert "Report mode for reading back the report" in out


def test_mode_help(capsys):
    """Test the help of a single mode."""
    with pytest.raises(SystemExit):
        MultiModeCLIArgs(["inject", "--help"])

    out = capsys.readouterr().out
    assert "usage: timetrack-cli inject" in out
    assert "--dry-run" in out


def test_argv_none():
    """Test that sys.argv is used without an explicit argv."""
    with patch.object(sys, "argv", ["timetrack-cli", "profile", "--show"]):
        args = MultiModeCLIArgs()

    assert args.modes[0][0] == "profile"
    assert args.modes[0][1].show is True


def test_unknown_argument():
    """Test an argument before any mode."""
    with pytest.raises(argparse.ArgumentTypeError, match="Unknown argument"):
        MultiModeCLIArgs(["build"])


def test_parse_multimode_args():
    """Test the module level helper."""
    args = parse_multimode_args(["report", "--all"])

    assert args.modes[0][1].all is True


def test_split_sections():
    """Test cutting a command line at the mode names."""
    leading, sections = split_sections(
        ["-v", "analyse", "-m", "run", "report", "--all"]
    )

    assert leading == ["-v"]
    assert sections == [("analyse", ["-m", "run"]), ("report", ["--all"])]


def test_section_value_wins_over_leading_value():
    """Test that a shared option inside a section overrides the front."""
    args = MultiModeCLIArgs(
        [
            "--project-dir",
            "/srv/app",
            "analyse",
            "-m",
            "run",
            "--project-dir",
            "/srv/other",
            "report",
        ]
    )

    assert args.modes[0][1].project_dir == Path("/srv/other")
    assert args.modes[1][1].project_dir == Path("/srv/app")


def test_help_lists_examples(capsys):
    """Test that the overview ends with usage examples."""
    with pytest.raises(SystemExit):
        MultiModeCLIArgs(["-h"])

    out = capsys.readouterr().out
    assert "usage: timetrack-cli [-v] [--project-dir DIR] <mode>" in out
    assert "timetrack-cli analyse -c OrderService -m run" in out
    assert "For mode-specific help: timetrack-cli <mode> --help" in out
