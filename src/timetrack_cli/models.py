"""Shared data model for call graph analysis and probe injection.

Everything here is created once per run and treated as read-only afterwards,
with the exception of the transient records (`InstrumentationSite`,
`LogLine`, `ModificationEvent`) produced while a rewrite is in flight.
"""

from __future__ import annotations

import ast
import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator, List, Optional

__all__ = [
    "RoutineRef",
    "CallGraphNode",
    "HomeScope",
    "ProbeInfo",
    "LoopProbe",
    "SiteKind",
    "InstrumentationSite",
    "LineKind",
    "LogLine",
    "ModificationEvent",
    "EventSink",
]


# =============================================================================
# Routines and the call graph
# =============================================================================


@dataclass(frozen=True, eq=False)
class RoutineRef:
    """Resolved identity of one function or method definition.

    Equality and hashing are identity based. The program model creates
    exactly one instance per definition, so two definitions sharing a name
    (a redefinition in the same module, or the same method name on two
    classes) never compare equal.

    Attributes:
        module: Dotted module name, e.g. ``services.process``.
        qualname: ``Class.method`` or ``function``.
        name: Bare routine name.
        class_name: Enclosing class name, None for module level functions.
        path: Path of the defining source file.
        node: The defining ``ast.FunctionDef`` / ``ast.AsyncFunctionDef``.
    """

    module: str
    qualname: str
    name: str
    class_name: Optional[str]
    path: Path
    node: ast.AST = field(repr=False)

    @property
    def display_name(self) -> str:
        """Return the fully qualified ``module.qualname`` of the routine."""
        return f"{self.module}.{self.qualname}"

    @property
    def lineno(self) -> int:
        """Return the line number of the ``def`` statement."""
        return getattr(self.node, "lineno", 0)


@dataclass(eq=False)
class CallGraphNode:
    """One node of the rooted call graph.

    A routine appears as an expanded node at most once per graph; any later
    occurrence (including recursive back-edges) is a leaf.

    Attributes:
        routine: The routine this node stands for.
        children: One child per retained call, in source order.
    """

    routine: RoutineRef
    children: List[CallGraphNode] = field(default_factory=list)

    def walk(self) -> Iterator[CallGraphNode]:
        """Yield this node and all descendants in pre-order."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def routines(self) -> List[RoutineRef]:
        """Return the distinct routines of the graph in pre-order."""
        seen: set[RoutineRef] = set()
        out: List[RoutineRef] = []
        for node in self.walk():
            if node.routine not in seen:
                seen.add(node.routine)
                out.append(node.routine)
        return out

    def depth(self) -> int:
        """Return the number of levels below (and including) this node."""
        if not self.children:
            return 1
        return 1 + max(child.depth() for child in self.children)


# =============================================================================
# Probes
# =============================================================================


@dataclass(frozen=True)
class HomeScope:
    """The single scope that declares every probe field.

    Attributes:
        module: Dotted name of the module holding the scope.
        class_name: Class declaring the fields, None when the entry routine
            is a module level function (fields become module globals).
        path: Path of the module's source file.
    """

    module: str
    class_name: Optional[str]
    path: Path

    def reference(self, in_module: str, alias: str) -> List[str]:
        """Return the attribute chain used to reach a probe from a module.

        Args:
            in_module: Module in which the reference will be written.
            alias: Name the home module is imported under elsewhere.

        Returns:
            Name parts, e.g. ``["ProcessService"]`` inside the home module
            and ``[alias, "ProcessService"]`` anywhere else.
        """
        parts: List[str] = []
        if in_module != self.module:
            parts.append(alias)
        if self.class_name is not None:
            parts.append(self.class_name)
        return parts

    @property
    def display_name(self) -> str:
        """Return ``module.Class`` (or just the module)."""
        if self.class_name is None:
            return self.module
        return f"{self.module}.{self.class_name}"


@dataclass(frozen=True)
class ProbeInfo:
    """Timer assigned to one routine of the call graph.

    Attributes:
        owner_scope: Always the home scope, wherever the routine lives.
        probe_name: Unique field name, ``probe{n}_{routine}``.
        source_routine: The routine timed by this probe.
    """

    owner_scope: HomeScope
    probe_name: str
    source_routine: RoutineRef


@dataclass(frozen=True)
class LoopProbe:
    """Timer assigned to one instrumented loop construct.

    Attributes:
        owner_scope: The home scope.
        probe_name: Unique field name, ``loop{n}_{routine}``.
        routine: Routine whose body contains the loop.
        lineno: Line of the loop header in the original source.
    """

    owner_scope: HomeScope
    probe_name: str
    routine: RoutineRef
    lineno: int


# =============================================================================
# Transient rewrite records
# =============================================================================


class SiteKind(enum.Enum):
    """Shape of a statement (or expression) selected for instrumentation.

    ``EMBEDDED_CALL`` is a call inside a larger expression. It is hoisted
    into a temporary bound just before its statement.
    """

    STANDALONE_CALL = "call"
    BOUND_DECLARATION_CALL = "bound-call"
    RETURNED_CALL = "return"
    LOOP_CONSTRUCT = "loop"
    EMBEDDED_CALL = "embedded-call"


@dataclass(frozen=True, eq=False)
class InstrumentationSite:
    """A statement or call paired with the probe that will wrap it.

    Attributes:
        kind: Classification of the site.
        node: The original statement, or the original call expression for
            embedded calls, used as the mapping key.
        probe: The routine or loop probe to start and stop around it.
        temp_name: Name of the temporary binding for returned and embedded
            calls.
    """

    kind: SiteKind
    node: ast.AST
    probe: ProbeInfo | LoopProbe
    temp_name: Optional[str] = None


class LineKind(enum.Enum):
    """Kind of a report line."""

    METHOD = "Method"
    LOOP = "Loop"


@dataclass(frozen=True)
class LogLine:
    """One line of the hierarchical timing report.

    Attributes:
        depth: Indentation depth (number of ``"| "`` markers).
        kind: Method or loop line.
        label: Routine qualname (``Class.method`` or ``function``) for
            methods, probe name for loops.
        probe_ref: Dotted expression reaching the probe from the entry
            routine, e.g. ``ProcessService.probe2_load_items``.
    """

    depth: int
    kind: LineKind
    label: str
    probe_ref: str


@dataclass(frozen=True)
class ModificationEvent:
    """Notification sent to the caller's sink during a rewrite.

    Attributes:
        kind: One of ``call``, ``loop``, ``return``, ``fields``, ``report``,
            ``file`` or ``warning``.
        target: What was touched (routine, probe or message).
        file: File concerned, if any.
    """

    kind: str
    target: str
    file: Optional[Path] = None

    def __str__(self) -> str:
        """Render the event as a single log line."""
        where = f" ({self.file})" if self.file is not None else ""
        return f"[{self.kind}] {self.target}{where}"


EventSink = Callable[[ModificationEvent], None]
