"""Pytest configuration and fixtures for timetrack-cli tests."""

import textwrap
from pathlib import Path
from typing import Callable, Dict

import pytest

from timetrack_cli import profile as profile_module
from timetrack_cli.call_graph import CallGraphResolver, ExclusionSet
from timetrack_cli.probes import ProbeRegistry
from timetrack_cli.profile import TimeTrackProfile
from timetrack_cli.program import PythonProject


@pytest.fixture
def make_project(tmp_path) -> Callable[[Dict[str, str]], Path]:
    """Return a factory writing a project tree from source strings.

    Keys are paths relative to the project root, values are dedented before
    being written.
    """

    def _make(files: Dict[str, str], root_name: str = "project") -> Path:
        root = tmp_path / root_name
        for rel, source in files.items():
            path = root / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(textwrap.dedent(source).lstrip("\n"))
        return root

    return _make


@pytest.fixture
def analyse_project(make_project):
    """Return a helper building the model, graph and registry of a project.

    The helper returns ``(model, graph, registry)``.
    """

    def _analyse(
        files: Dict[str, str],
        class_name: str | None,
        method_name: str,
        recursive: bool = True,
        exclude=None,
    ):
        root = make_project(files)
        model = PythonProject(root)
        entry = model.resolve_entry_routine(class_name, method_name)
        assert entry is not None, f"{class_name}.{method_name} not found"
        exclusions = ExclusionSet()
        if exclude is not None:
            exclusions = ExclusionSet(exclude)
        graph = CallGraphResolver(exclusions, recursive=recursive).resolve(
            entry, model
        )
        registry = ProbeRegistry.build(graph, model.home_scope_for(entry))
        return model, graph, registry

    return _analyse


@pytest.fixture
def profile_file(tmp_path, monkeypatch):
    """Point the profile store at a temporary file."""
    path = tmp_path / "home" / ".timetrack-cli" / "profiles.yaml"
    monkeypatch.setattr(profile_module, "PROFILE_FILE", path)
    profile_module._load_profile.cache_clear()
    yield path
    profile_module._load_profile.cache_clear()


@pytest.fixture
def make_config(tmp_path) -> Callable[..., TimeTrackProfile]:
    """Return a factory for profiles pointing at a project."""

    def _make(project_dir: Path, **kwargs) -> TimeTrackProfile:
        kwargs.setdefault("output_dir", tmp_path / "timed")
        return TimeTrackProfile(project_dir=project_dir, **kwargs)

    return _make


# A small service project used by several test modules.
SERVICE_PROJECT = {
    "app/__init__.py": "",
    "app/service.py": '''
        """Order processing."""

        from app.repository import Repository
        from app.helpers import normalise


        class OrderService:
            """Processes orders."""

            def __init__(self):
                self.repo = Repository()

            def run(self, orders):
                # load everything first
                items = self.repo.load(orders)
                for item in items:
                    self.handle(item)
                total = normalise(len(items))
                return total

            def handle(self, item):
                self.repo.save(item)
    ''',
    "app/repository.py": '''
        class Repository:
            def load(self, orders):
                return [o for o in orders]

            def save(self, item):
                print("saved", item)
    ''',
    "app/helpers.py": '''
        def normalise(value):
            return value * 1.0
    ''',
}


@pytest.fixture
def service_project() -> Dict[str, str]:
    """Return the sources of the small service project."""
    return dict(SERVICE_PROJECT)
