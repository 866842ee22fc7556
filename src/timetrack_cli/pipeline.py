"""Run an analysis, instrument the sources and write them back.

These three steps are what the command line modes build on:

    analysis = run_analysis(profile)
    result = run_rewrite(analysis, profile)
    written = write_units(result.units, profile)

`profile` is a `TimeTrackProfile` or any object with the same attributes.
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, NamedTuple, Optional, Sequence

from timetrack_cli.call_graph import (
    CallGraphResolver,
    EntryRoutineNotFound,
    ExclusionSet,
)
from timetrack_cli.models import (
    CallGraphNode,
    EventSink,
    HomeScope,
    ModificationEvent,
    RoutineRef,
)
from timetrack_cli.probes import ProbeRegistry
from timetrack_cli.profile import split_list
from timetrack_cli.program import IGNORE_DIRS, PythonProject
from timetrack_cli.rewriter import RewrittenUnit, SourceRewriter

__all__ = [
    "AnalysisResult",
    "GraphEntry",
    "RewriteResult",
    "run_analysis",
    "run_rewrite",
    "write_units",
]


class GraphEntry(NamedTuple):
    """One routine of the call graph as listed to the user."""

    scope: str
    routine: str
    file: Path


@dataclass(eq=False)
class AnalysisResult:
    """Everything resolved before any source is changed.

    Attributes:
        model: The program model of the project.
        entry: The entry routine.
        graph: Root of the call graph.
        registry: Probes of every graph routine.
        home_scope: Scope declaring the probe fields.
        exclusions: Routines never timed.
        entries: One entry per probed routine, in probe order.
    """

    model: PythonProject
    entry: RoutineRef
    graph: CallGraphNode
    registry: ProbeRegistry
    home_scope: HomeScope
    exclusions: ExclusionSet
    entries: List[GraphEntry] = field(default_factory=list)


@dataclass(eq=False)
class RewriteResult:
    """Instrumented modules and what was done to them.

    Attributes:
        units: One entry per changed module.
        events: Every modification event, in the order received.
    """

    units: List[RewrittenUnit]
    events: List[ModificationEvent] = field(default_factory=list)


def _scope_of(routine: RoutineRef) -> str:
    if routine.class_name is None:
        return routine.module
    return f"{routine.module}.{routine.class_name}"


def run_analysis(config, sink: Optional[EventSink] = None) -> AnalysisResult:
    """Index the project and resolve the call graph of the entry routine.

    Args:
        config: The profile to run with.
        sink: Receives warnings about modules that cannot be parsed.

    Returns:
        AnalysisResult: The resolved graph and its probes.

    Raises:
        ValueError: If no project directory or entry method is configured.
        FileNotFoundError: If the project directory does not exist.
        EntryRoutineNotFound: If the entry routine is not in the project.
    """
    if config.project_dir is None:
        raise ValueError(
            "No project directory configured. Run 'timetrack-cli profile "
            "--init' or pass --project-dir."
        )
    if not config.method_name:
        raise ValueError("No entry method configured.")

    model = PythonProject(
        config.project_dir,
        packages=split_list(config.packages),
        ambiguous_fallback=config.ambiguous_fallback,
        sink=sink,
    )

    entry = model.resolve_entry_routine(config.class_name, config.method_name)
    if entry is None:
        where = (
            f"{config.class_name}.{config.method_name}"
            if config.class_name
            else config.method_name
        )
        raise EntryRoutineNotFound(
            f"Entry routine '{where}' not found in {model.root}."
        )

    exclusions = ExclusionSet(tuple(split_list(config.exclude)))
    resolver = CallGraphResolver(exclusions, recursive=config.recursive)
    graph = resolver.resolve(entry, model)

    home_scope = model.home_scope_for(entry)
    registry = ProbeRegistry.build(graph, home_scope)

    entries = [
        GraphEntry(_scope_of(routine), routine.qualname, routine.path)
        for routine in registry
    ]

    return AnalysisResult(
        model=model,
        entry=entry,
        graph=graph,
        registry=registry,
        home_scope=home_scope,
        exclusions=exclusions,
        entries=entries,
    )


def run_rewrite(
    analysis: AnalysisResult,
    config,
    sink: Optional[EventSink] = None,
    progress: bool = False,
) -> RewriteResult:
    """Instrument the modules of an analysis.

    Nothing is written to disk here.

    Args:
        analysis: Result of `run_analysis`.
        config: The profile to run with.
        sink: Receives every modification event as it happens.
        progress: Show a progress bar.

    Returns:
        RewriteResult: The changed modules and the events.
    """
    events: List[ModificationEvent] = []

    def _collect(event: ModificationEvent) -> None:
        events.append(event)
        if sink is not None:
            sink(event)

    rewriter = SourceRewriter(
        exclusions=analysis.exclusions,
        report_variable=config.report_variable,
        report_file=str(config.report_file) if config.report_file else None,
        generate_report=config.generate_report,
        jobs=config.jobs,
        sink=_collect,
        progress=progress,
    )
    units = rewriter.rewrite(
        analysis.model, analysis.graph, analysis.registry
    )
    return RewriteResult(units=units, events=events)


def _mirror_project(project_dir: Path, output_dir: Path) -> None:
    """Copy the project tree to `output_dir`, leaving out tool directories."""
    if output_dir == project_dir:
        raise ValueError(
            f"Output directory {output_dir} is the project directory; "
            "set overwrite_original instead."
        )
    ignored = set(IGNORE_DIRS)
    if output_dir.is_relative_to(project_dir):
        # Never copy the output into itself
        ignored.add(output_dir.relative_to(project_dir).parts[0])
    shutil.copytree(
        project_dir,
        output_dir,
        ignore=shutil.ignore_patterns(*sorted(ignored)),
        dirs_exist_ok=True,
    )


def write_units(
    units: Sequence[RewrittenUnit],
    config,
    sink: Optional[EventSink] = None,
) -> List[Path]:
    """Write instrumented modules to disk.

    With ``overwrite_original`` the modules are replaced in place. Otherwise
    the project is first mirrored to ``output_dir`` and the modules are
    written there. A module that cannot be written is reported as a warning
    and the others are still written.

    Args:
        units: The instrumented modules.
        config: The profile to run with.
        sink: Receives one ``file`` event per module written and one
            ``warning`` event per failure.

    Returns:
        list[Path]: The files written.

    Raises:
        ValueError: If the modules are not overwritten and no output
            directory is configured.
    """

    def _emit(event: ModificationEvent) -> None:
        if sink is not None:
            sink(event)

    if config.overwrite_original:
        targets = [unit.path for unit in units]
    else:
        if config.output_dir is None:
            raise ValueError(
                "No output directory configured and overwrite_original "
                "is off."
            )
        project_dir = Path(config.project_dir).expanduser().resolve()
        output_dir = Path(config.output_dir).expanduser().resolve()
        _mirror_project(project_dir, output_dir)
        targets = [output_dir / unit.unit.rel_path for unit in units]

    written: List[Path] = []
    for unit, target in zip(units, targets):
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "w", encoding="utf-8", newline="") as f:
                f.write(unit.source)
        except OSError as e:
            _emit(
                ModificationEvent("warning", f"Could not write: {e}", target)
            )
            continue
        written.append(target)
        _emit(ModificationEvent("file", str(unit.unit.rel_path), target))
    return written
