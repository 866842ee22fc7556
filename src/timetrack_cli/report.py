"""Hierarchical timing report: line construction, formatting and parsing.

A report as printed by an instrumented program looks like::

    [Inside method: ProcessService.run]
    | [Method: load_items] Time: 12 ms - 0:00:00.012345
    | | [Method: parse] Time: 3 ms - 0:00:00.003012
    | | [Loop: loop1_load_items] Time: 11 ms - 0:00:00.011002
    | [Method: save] Time: 40 ms - 0:00:00.040117

Each ``"| "`` marks one level of depth, which is what `parse_report` counts
to recover the hierarchy.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional, Sequence, Set

from timetrack_cli.models import (
    CallGraphNode,
    HomeScope,
    LineKind,
    LogLine,
    LoopProbe,
    RoutineRef,
)
from timetrack_cli.program import matches_any

__all__ = [
    "DEPTH_MARKER",
    "ReportBuilder",
    "ReportEntry",
    "format_log_line",
    "header_text",
    "line_prefix",
    "parse_report",
]

DEPTH_MARKER = "| "

_HEADER_RE = re.compile(r"^\[Inside method: (?P<entry>.*)\]\s*$")
_LINE_RE = re.compile(
    r"^(?P<marks>(?:\| )*)\[(?P<kind>Method|Loop): (?P<label>[^\]]*)\] "
    r"Time: (?P<ms>-?\d+) ms - (?P<elapsed>.*?)\s*$"
)


def header_text(entry_label: str) -> str:
    """Return the first line of a report."""
    return f"[Inside method: {entry_label}]"


def line_prefix(line: LogLine) -> str:
    """Return the text of a report line up to its measured values."""
    marks = DEPTH_MARKER * line.depth
    return f"{marks}[{line.kind.value}: {line.label}] Time: "


def format_log_line(line: LogLine, elapsed_ms: int, elapsed) -> str:
    """Render a report line with measured values.

    Args:
        line: The line to render.
        elapsed_ms: Whole milliseconds.
        elapsed: Anything printable as the full duration, usually a
            `timedelta`.

    Returns:
        The line exactly as the instrumented program prints it.
    """
    return f"{line_prefix(line)}{elapsed_ms} ms - {elapsed}"


class ReportBuilder:
    """Turns a call graph and its probes into ordered report lines.

    Lines follow a pre-order walk from the root's children. A routine gets a
    method line the first time it is met only; later occurrences are still
    walked. The loops of a routine follow its method line and subtree, one
    level deeper.
    """

    def __init__(self, exclude: Sequence[str] = ()) -> None:
        """Initialize the builder.

        Args:
            exclude: fnmatch patterns of routines that get no method line.
        """
        self.exclude = list(exclude)

    def build(
        self,
        graph: CallGraphNode,
        registry,
        loops: Optional[Sequence[LoopProbe]] = None,
    ) -> List[LogLine]:
        """Build the report lines.

        Args:
            graph: Root of the call graph.
            registry: The `ProbeRegistry` of the graph.
            loops: Loop probes to report, defaults to the registry's.

        Returns:
            The lines in report order.
        """
        if loops is None:
            loops = registry.loops
        home: HomeScope = registry.home_scope

        self._registry = registry
        self._home = home
        self._loops = list(loops)
        self._seen: Set[RoutineRef] = {graph.routine}
        self._lines: List[LogLine] = []

        for child in graph.children:
            self._visit(child, 1)
        self._add_loops(graph.routine, 1)
        return self._lines

    def _ref(self, probe_name: str) -> str:
        parts = self._home.reference(self._home.module, "")
        return ".".join(parts + [probe_name])

    def _visit(self, node: CallGraphNode, depth: int) -> None:
        routine = node.routine
        first = routine not in self._seen
        if first:
            self._seen.add(routine)
            probe = self._registry.probe_for(routine)
            if probe is not None and not matches_any(routine, self.exclude):
                self._lines.append(
                    LogLine(
                        depth=depth,
                        kind=LineKind.METHOD,
                        label=routine.qualname,
                        probe_ref=self._ref(probe.probe_name),
                    )
                )

        for child in node.children:
            self._visit(child, depth + 1)

        if first:
            self._add_loops(routine, depth + 1)

    def _add_loops(self, routine: RoutineRef, depth: int) -> None:
        for loop in self._loops:
            if loop.routine is not routine:
                continue
            self._lines.append(
                LogLine(
                    depth=depth,
                    kind=LineKind.LOOP,
                    label=loop.probe_name,
                    probe_ref=self._ref(loop.probe_name),
                )
            )


# =============================================================================
# Reading reports back
# =============================================================================


@dataclass(frozen=True)
class ReportEntry:
    """One measured line of a printed report.

    Attributes:
        report: Position of the report in the text, from 0.
        entry: Header label of the report the line belongs to.
        depth: Number of ``"| "`` markers.
        kind: Method or loop line.
        label: Routine name or loop probe name.
        elapsed_ms: Whole milliseconds.
        elapsed: The full duration text, as printed.
    """

    report: int
    entry: str
    depth: int
    kind: LineKind
    label: str
    elapsed_ms: int
    elapsed: str


def parse_report(text: str) -> List[ReportEntry]:
    """Parse every measured line of one or more printed reports.

    Lines that are neither headers nor measured lines are ignored, so a
    report can be read back from a log mixed with other output.

    Args:
        text: The report text.

    Returns:
        The entries, in order of appearance.
    """
    entries: List[ReportEntry] = []
    entry = ""
    report = -1
    for raw in text.splitlines():
        header = _HEADER_RE.match(raw)
        if header:
            entry = header.group("entry")
            report += 1
            continue
        match = _LINE_RE.match(raw)
        if match is None:
            continue
        report = max(report, 0)
        entries.append(
            ReportEntry(
                report=report,
                entry=entry,
                depth=len(match.group("marks")) // len(DEPTH_MARKER),
                kind=LineKind(match.group("kind")),
                label=match.group("label"),
                elapsed_ms=int(match.group("ms")),
                elapsed=match.group("elapsed"),
            )
        )
    return entries
