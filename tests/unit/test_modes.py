"""Tests for the analyse, inject and report modes."""

import argparse
from unittest.mock import patch

import pytest

from timetrack_cli.call_graph import EntryRoutineNotFound
from timetrack_cli.models import ModificationEvent
from timetrack_cli.modes import analyse, inject, report
from timetrack_cli.profile import TimeTrackProfile, _save_profile

REPORT_TEXT = "\n".join(
    [
        "[Inside method: OrderService.run]",
        "| [Method: load] Time: 12 ms - 0:00:00.012345",
        "| | [Method: parse] Time: 3 ms - 0:00:00.003012",
        "| [Loop: loop1_run] Time: 11 ms - 0:00:00.011002",
        "[Inside method: OrderService.run]",
        "| [Method: load] Time: 9 ms - 0:00:00.009000",
        "",
    ]
)


def _parse(module, argv, **extra):
    """Parse a mode's arguments the way the multi-mode parser does."""
    parser = argparse.ArgumentParser()
    module.add_arguments(parser)
    args = parser.parse_args(argv)
    args.verbose = False
    args.project_dir = None
    for key, value in extra.items():
        setattr(args, key, value)
    return args


class TestAnalyseMode:
    """Tests for the analyse mode."""

    def test_add_arguments_defaults(self):
        """Test that every target option defaults to None."""
        args = _parse(analyse, [])

        assert args.class_name is None
        assert args.method_name is None
        assert args.packages is None
        assert args.exclude is None
        assert args.recursive is None
        assert args.ambiguous_fallback is None

    def test_add_arguments_values(self):
        """Test the short and negative forms."""
        args = _parse(
            analyse, ["-c", "Svc", "-m", "run", "--no-recursive"]
        )

        assert args.class_name == "Svc"
        assert args.method_name == "run"
        assert args.recursive is False
        assert args.ambiguous_fallback is None

    def test_fallback_is_opt_in(self):
        """Test that the name based fallback is only enabled on request."""
        args = _parse(analyse, ["--fallback"])

        assert args.ambiguous_fallback is True

    def test_run_prints_tree_and_table(
        self, profile_file, make_project, service_project, capsys
    ):
        """Test the printed call tree and routine table."""
        root = make_project(service_project)
        args = _parse(
            analyse, ["-c", "OrderService", "-m", "run"], project_dir=root
        )

        analyse.run(args)

        out = capsys.readouterr().out
        assert "Entry routine: app.service.OrderService.run" in out
        assert "Probes declared in: app.service.OrderService" in out
        assert "\n".join(
            [
                "OrderService.run",
                "|-- Repository.load",
                "|-- OrderService.handle",
                "    |-- Repository.save",
                "|-- normalise",
            ]
        ) in out
        assert "4 ROUTINES" in out
        assert "probe1_load" in out
        assert "app/helpers.py" in out

    def test_run_unknown_entry(
        self, profile_file, make_project, service_project
    ):
        """Test that a missing entry routine is an error."""
        root = make_project(service_project)
        args = _parse(
            analyse, ["-c", "OrderService", "-m", "nope"], project_dir=root
        )

        with pytest.raises(EntryRoutineNotFound):
            analyse.run(args)

    @patch("timetrack_cli.modes.analyse.tqdm")
    def test_sink_prints_warnings_only(self, mock_tqdm):
        """Test the quiet sink."""
        sink = analyse.make_sink()

        sink(ModificationEvent("call", "load"))
        sink(ModificationEvent("warning", "cannot read x.py"))

        mock_tqdm.write.assert_called_once_with(
            "[warning] cannot read x.py"
        )

    @patch("timetrack_cli.modes.analyse.tqdm")
    def test_verbose_sink_prints_everything(self, mock_tqdm):
        """Test the verbose sink."""
        sink = analyse.make_sink(verbose=True)

        sink(ModificationEvent("call", "load"))
        sink(ModificationEvent("loop", "loop1_run"))

        assert mock_tqdm.write.call_count == 2


class TestInjectMode:
    """Tests for the inject mode."""

    def test_add_arguments(self):
        """Test the inject specific options."""
        args = _parse(inject, [])
        assert args.output_dir is None
        assert args.overwrite_original is None
        assert args.generate_report is None
        assert args.jobs is None
        assert args.dry_run is False

        args = _parse(
            inject,
            ["-o", "out", "--overwrite", "--no-report", "-j", "3"],
        )
        assert str(args.output_dir) == "out"
        assert args.overwrite_original is True
        assert args.generate_report is False
        assert args.jobs == 3

    def test_dry_run_prints_diff(
        self, profile_file, make_project, service_project, tmp_path, capsys
    ):
        """Test that a dry run only prints the changes."""
        root = make_project(service_project)
        original = (root / "app" / "service.py").read_text()
        args = _parse(
            inject,
            ["-c", "OrderService", "-m", "run", "--dry-run"],
            project_dir=root,
        )

        inject.run(args)

        out = capsys.readouterr().out
        assert "--- a/app/service.py" in out
        assert "+++ b/app/service.py" in out
        assert "+from timetrack_cli.stopwatch import Stopwatch" in out
        assert "INSTRUMENTATION" in out
        assert "Instrumented project written to" not in out
        assert (root / "app" / "service.py").read_text() == original

    def test_writes_output_dir(
        self, profile_file, make_project, service_project, tmp_path, capsys
    ):
        """Test writing the instrumented copy."""
        root = make_project(service_project)
        output = tmp_path / "timed"
        args = _parse(
            inject,
            ["-c", "OrderService", "-m", "run", "-o", str(output)],
            project_dir=root,
        )

        inject.run(args)

        out = capsys.readouterr().out
        assert f"Instrumented project written to {output}" in out
        assert "| Files written   |     1 |" in out
        assert "| Wrapped calls   |     4 |" in out
        text = (output / "app" / "service.py").read_text()
        assert "probe4_normalise" in text

    def test_requires_destination(
        self, profile_file, make_project, service_project
    ):
        """Test that writing without a destination fails."""
        root = make_project(service_project)
        args = _parse(
            inject, ["-c", "OrderService", "-m", "run"], project_dir=root
        )

        with pytest.raises(ValueError, match="No output directory"):
            inject.run(args)


class TestReportMode:
    """Tests for the report mode."""

    def test_add_arguments(self):
        """Test the positional report file and --all."""
        args = _parse(report, [])
        assert args.report is None
        assert args.all is False

        args = _parse(report, ["timing.log", "-a"])
        assert str(args.report) == "timing.log"
        assert args.all is True

    def test_last_report(self, tmp_path, capsys):
        """Test that only the last report is shown by default."""
        path = tmp_path / "timing.log"
        path.write_text(REPORT_TEXT)

        report.run(_parse(report, [str(path)]))

        out = capsys.readouterr().out
        assert out.count("OrderService.run") == 1
        assert "| load" in out
        assert "parse" not in out

    def test_all_reports(self, tmp_path, capsys):
        """Test showing every report in the file."""
        path = tmp_path / "timing.log"
        path.write_text(REPORT_TEXT)

        report.run(_parse(report, [str(path), "--all"]))

        out = capsys.readouterr().out
        assert out.count("OrderService.run") == 2
        assert "| parse" in out
        assert "loop1_run" in out
        assert "Loop" in out

    def test_report_file_from_profile(self, profile_file, tmp_path, capsys):
        """Test reading the file named by the profile."""
        path = tmp_path / "timing.log"
        path.write_text(REPORT_TEXT)
        _save_profile(TimeTrackProfile(project_dir=tmp_path, report_file=path))

        report.run(_parse(report, []))

        assert "OrderService.run" in capsys.readouterr().out

    def test_no_report_file(self, profile_file):
        """Test that a report file is required."""
        with pytest.raises(ValueError, match="No report file"):
            report.run(_parse(report, []))

    def test_missing_report_file(self, tmp_path):
        """Test a report file that does not exist."""
        with pytest.raises(FileNotFoundError, match="Report file not found"):
            report.run(_parse(report, [str(tmp_path / "missing.log")]))

    def test_no_timing_lines(self, tmp_path, capsys):
        """Test a file without any report."""
        path = tmp_path / "timing.log"
        path.write_text("nothing here\n")

        report.run(_parse(report, [str(path)]))

        assert "No timing lines found" in capsys.readouterr().out
