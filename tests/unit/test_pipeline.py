"""Tests for the analysis, rewrite and write pipeline."""

import importlib
import sys
from unittest.mock import patch

import pytest

from timetrack_cli.call_graph import EntryRoutineNotFound
from timetrack_cli.models import LineKind
from timetrack_cli.pipeline import (
    GraphEntry,
    run_analysis,
    run_rewrite,
    write_units,
)
from timetrack_cli.report import parse_report

SHOP_PROJECT = {
    "ttshop/__init__.py": "",
    "ttshop/app.py": """
        from ttshop import worker


        class App:
            def run(self, items):
                total = 0
                for item in items:
                    value = worker.process(item)
                    total = total + value
                return worker.finish(total)
    """,
    "ttshop/worker.py": """
        def double(item):
            return item * 2


        def process(item):
            value = double(item)
            return value


        def finish(total):
            return double(total)
    """,
}

# The entry module imports from the helper module by name
CYCLE_PROJECT = {
    "ttcycle/__init__.py": "",
    "ttcycle/app.py": """
        from ttcycle.worker import process


        class App:
            def run(self, item):
                return process(item)
    """,
    "ttcycle/worker.py": """
        def double(item):
            return item * 2


        def process(item):
            return double(item) + 1
    """,
}


@pytest.fixture
def clean_shop_modules():
    """Forget the instrumented test packages after the test."""
    yield
    for name in list(sys.modules):
        if name.split(".")[0] in ("ttshop", "ttcycle"):
            del sys.modules[name]


class TestRunAnalysis:
    """Tests for run_analysis."""

    def test_no_project_dir(self, make_config):
        """Test that a project directory is required."""
        config = make_config(None, method_name="run")

        with pytest.raises(ValueError, match="No project directory"):
            run_analysis(config)

    def test_no_method(self, make_project, make_config, service_project):
        """Test that an entry method is required."""
        config = make_config(make_project(service_project))

        with pytest.raises(ValueError, match="No entry method"):
            run_analysis(config)

    def test_missing_project_dir(self, tmp_path, make_config):
        """Test a project directory that does not exist."""
        config = make_config(tmp_path / "missing", method_name="run")

        with pytest.raises(FileNotFoundError):
            run_analysis(config)

    def test_entry_not_found(self, make_project, make_config, service_project):
        """Test an entry routine that is not in the project."""
        config = make_config(
            make_project(service_project),
            class_name="OrderService",
            method_name="missing",
        )

        with pytest.raises(EntryRoutineNotFound, match="OrderService.missing"):
            run_analysis(config)

    def test_entries(self, make_project, make_config, service_project):
        """Test the routine table of an analysis."""
        root = make_project(service_project)
        config = make_config(
            root, class_name="OrderService", method_name="run"
        )

        analysis = run_analysis(config)

        assert analysis.entry.qualname == "OrderService.run"
        assert analysis.home_scope.display_name == "app.service.OrderService"
        assert analysis.entries[0] == GraphEntry(
            "app.repository.Repository",
            "Repository.load",
            root.resolve() / "app" / "repository.py",
        )
        assert [e.routine for e in analysis.entries] == [
            "Repository.load",
            "OrderService.handle",
            "Repository.save",
            "normalise",
        ]
        assert analysis.entries[-1].scope == "app.helpers"

    def test_profile_exclusions_are_used(
        self, make_project, make_config, service_project
    ):
        """Test that the profile's patterns reach the resolver."""
        config = make_config(
            make_project(service_project),
            class_name="OrderService",
            method_name="run",
            exclude="*.save, normalise",
        )

        analysis = run_analysis(config)

        assert [e.routine for e in analysis.entries] == [
            "Repository.load",
            "OrderService.handle",
        ]


class TestWriteUnits:
    """Tests for write_units."""

    def _rewrite(self, make_project, make_config, files, **kwargs):
        root = make_project(files)
        config = make_config(
            root, class_name="OrderService", method_name="run", **kwargs
        )
        analysis = run_analysis(config)
        return root, config, run_rewrite(analysis, config)

    def test_mirror_to_output_dir(
        self, make_project, make_config, service_project, tmp_path
    ):
        """Test that the project is copied and the modules written there."""
        root, config, result = self._rewrite(
            make_project, make_config, service_project
        )
        original = (root / "app" / "service.py").read_text()
        events = []

        written = write_units(result.units, config, sink=events.append)

        output = tmp_path / "timed"
        assert written == [output.resolve() / "app" / "service.py"]
        assert "probe1_load" in written[0].read_text()
        assert (root / "app" / "service.py").read_text() == original
        assert (output / "app" / "repository.py").read_bytes() == (
            root / "app" / "repository.py"
        ).read_bytes()
        assert [(e.kind, e.target) for e in events] == [
            ("file", "app/service.py")
        ]

    def test_overwrite_original(
        self, make_project, make_config, service_project, tmp_path
    ):
        """Test writing the modules in place."""
        root, config, result = self._rewrite(
            make_project,
            make_config,
            service_project,
            overwrite_original=True,
        )

        written = write_units(result.units, config)

        assert written == [result.units[0].path]
        assert "probe1_load" in (root / "app" / "service.py").read_text()
        assert not (tmp_path / "timed").exists()

    def test_output_dir_required(
        self, make_project, make_config, service_project
    ):
        """Test that a destination is required without overwrite."""
        _, config, result = self._rewrite(
            make_project, make_config, service_project, output_dir=None
        )

        with pytest.raises(ValueError, match="No output directory"):
            write_units(result.units, config)

    def test_output_dir_is_project_dir(
        self, make_project, make_config, service_project
    ):
        """Test that the project cannot be mirrored onto itself."""
        root, config, result = self._rewrite(
            make_project, make_config, service_project
        )
        config.output_dir = root

        with pytest.raises(ValueError, match="is the project directory"):
            write_units(result.units, config)

    def test_output_dir_inside_project(
        self, make_project, make_config, service_project
    ):
        """Test that an output directory inside the project is not copied."""
        root, config, result = self._rewrite(
            make_project, make_config, service_project
        )
        config.output_dir = root / "timed"

        write_units(result.units, config)
        write_units(result.units, config)

        assert (root / "timed" / "app" / "service.py").exists()
        assert not (root / "timed" / "timed").exists()

    def test_write_failure_is_a_warning(
        self, make_project, make_config, service_project
    ):
        """Test that an unwritable module is reported and skipped."""
        _, config, result = self._rewrite(
            make_project, make_config, service_project
        )
        events = []

        with patch(
            "timetrack_cli.pipeline.open",
            side_effect=OSError("disk full"),
            create=True,
        ):
            written = write_units(result.units, config, sink=events.append)

        assert written == []
        assert [e.kind for e in events] == ["warning"]
        assert "disk full" in events[0].target


class TestEndToEnd:
    """Run an instrumented program and read its report."""

    def test_instrumented_program_reports_timings(
        self,
        make_project,
        make_config,
        monkeypatch,
        capsys,
        tmp_path,
        clean_shop_modules,
    ):
        """Test the whole pipeline on a two module package."""
        root = make_project(SHOP_PROJECT)
        report_file = tmp_path / "timing.log"
        config = make_config(
            root,
            class_name="App",
            method_name="run",
            report_file=report_file,
        )

        analysis = run_analysis(config)
        result = run_rewrite(analysis, config)
        write_units(result.units, config)

        assert sorted(u.unit.module for u in result.units) == [
            "ttshop.app",
            "ttshop.worker",
        ]

        monkeypatch.syspath_prepend(str(tmp_path / "timed"))
        importlib.invalidate_caches()
        app = importlib.import_module("ttshop.app")

        assert app.App().run([1, 2, 3]) == 24

        printed = parse_report(capsys.readouterr().out)
        assert [(e.depth, e.kind, e.label) for e in printed] == [
            (1, LineKind.METHOD, "process"),
            (2, LineKind.METHOD, "double"),
            (1, LineKind.METHOD, "finish"),
            (1, LineKind.LOOP, "loop1_run"),
        ]
        assert {e.entry for e in printed} == {"App.run"}
        assert all(e.elapsed_ms >= 0 for e in printed)

        logged = parse_report(report_file.read_text())
        assert [e.label for e in logged] == [e.label for e in printed]

    def test_probes_accumulate_across_runs(
        self,
        make_project,
        make_config,
        monkeypatch,
        capsys,
        tmp_path,
        clean_shop_modules,
    ):
        """Test that every run appends one more report to the file."""
        root = make_project(SHOP_PROJECT)
        report_file = tmp_path / "timing.log"
        config = make_config(
            root,
            class_name="App",
            method_name="run",
            report_file=report_file,
        )
        result = run_rewrite(run_analysis(config), config)
        write_units(result.units, config)

        monkeypatch.syspath_prepend(str(tmp_path / "timed"))
        importlib.invalidate_caches()
        app = importlib.import_module("ttshop.app")
        app.App().run([1])
        app.App().run([2])

        logged = parse_report(report_file.read_text())
        assert sorted({e.report for e in logged}) == [0, 1]
        assert app.App.probe1_process.elapsed_seconds > 0
        assert not app.App.probe1_process.is_running

    def test_helper_module_imported_first(
        self,
        make_project,
        make_config,
        monkeypatch,
        capsys,
        tmp_path,
        clean_shop_modules,
    ):
        """Test a helper module that is imported before the entry module."""
        root = make_project(CYCLE_PROJECT)
        config = make_config(root, class_name="App", method_name="run")
        result = run_rewrite(run_analysis(config), config)
        write_units(result.units, config)

        monkeypatch.syspath_prepend(str(tmp_path / "timed"))
        importlib.invalidate_caches()
        worker = importlib.import_module("ttcycle.worker")
        app = importlib.import_module("ttcycle.app")

        assert worker.process(2) == 5
        assert app.App.probe2_double.elapsed_seconds > 0
        assert app.App().run(3) == 7

        printed = parse_report(capsys.readouterr().out)
        assert [(e.depth, e.label) for e in printed] == [
            (1, "process"),
            (2, "double"),
        ]
