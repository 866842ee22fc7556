"""Discover every project routine reachable from the entry routine."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Set

from timetrack_cli.models import CallGraphNode, RoutineRef
from timetrack_cli.program import ProgramModel, iter_calls, matches_any

__all__ = [
    "DEFAULT_EXCLUDES",
    "CallGraphResolver",
    "EntryRoutineNotFound",
    "ExclusionSet",
]

# Logging leaves and the program's own startup routine
DEFAULT_EXCLUDES = (
    "*LogService.*",
    "*Logger.*",
    "main",
    "__main__.*",
)


class EntryRoutineNotFound(ValueError):
    """Raised when the configured entry routine cannot be resolved."""


@dataclass(frozen=True)
class ExclusionSet:
    """Routines that are never graph edges, wrapped or reported.

    Attributes:
        patterns: fnmatch patterns tried against the routine's name,
            qualname and ``module.qualname``.
    """

    patterns: Sequence[str] = field(default_factory=lambda: DEFAULT_EXCLUDES)

    def __contains__(self, routine: RoutineRef) -> bool:
        """Return True if `routine` is excluded."""
        return matches_any(routine, self.patterns)


class CallGraphResolver:
    """Builds the rooted call graph of an entry routine.

    Each routine is expanded at most once per resolver. A call to a routine
    that has already been expanded still produces a child node, but that
    node is a leaf, which cuts recursion and mutual recursion.
    """

    def __init__(
        self,
        exclusions: Optional[ExclusionSet] = None,
        recursive: bool = True,
    ) -> None:
        """Initialize the resolver.

        Args:
            exclusions: Routines dropped from the graph.
            recursive: If False only the entry routine's direct calls are
                collected.
        """
        if exclusions is None:
            exclusions = ExclusionSet()
        self.exclusions = exclusions
        self.recursive = recursive
        self._visited: Set[RoutineRef] = set()

    def resolve(
        self, entry: RoutineRef, program_model: ProgramModel
    ) -> CallGraphNode:
        """Build the call graph rooted at `entry`.

        Args:
            entry: The entry routine.
            program_model: Supplies bodies and call resolution.

        Returns:
            The root node.
        """
        self._visited = set()
        root = CallGraphNode(entry)
        self._expand(root, program_model, depth=0)
        return root

    def _expand(
        self, node: CallGraphNode, model: ProgramModel, depth: int
    ) -> None:
        routine = node.routine
        if routine in self._visited:
            return
        self._visited.add(routine)

        if not self.recursive and depth > 0:
            return

        for target in self.callees(routine, model):
            child = CallGraphNode(target)
            node.children.append(child)
            self._expand(child, model, depth + 1)

    def callees(
        self, routine: RoutineRef, model: ProgramModel
    ) -> List[RoutineRef]:
        """Return the retained call targets of a routine, one per call.

        Calls that cannot be resolved, that leave the project or that hit
        the exclusion set are dropped.
        """
        out: List[RoutineRef] = []
        for call in iter_calls(model.get_body(routine)):
            target = model.resolve_call_target(call, routine)
            if target is None:
                continue
            if not model.is_project_routine(target):
                continue
            if target in self.exclusions:
                continue
            out.append(target)
        return out
