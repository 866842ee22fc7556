"""Probe identities for the routines and loops of a call graph."""

from __future__ import annotations

import re
from typing import Dict, Iterator, List, Optional

from timetrack_cli.models import (
    CallGraphNode,
    HomeScope,
    LoopProbe,
    ProbeInfo,
    RoutineRef,
)

__all__ = ["ProbeRegistry", "sanitize"]

_INVALID_CHARS = re.compile(r"[^A-Za-z0-9_]")


def sanitize(name: str) -> str:
    """Keep only the ASCII letters, digits and underscores of `name`."""
    return _INVALID_CHARS.sub("", name)


class ProbeRegistry:
    """Maps every routine of a call graph to a probe in the home scope.

    Routine probes are numbered in pre-order of the graph below the root,
    starting at 1. The entry routine only gets a probe when a call reaches
    it again (recursion back into the entry).
    Loop probes are numbered separately, in the order `loop_probe` is
    called.

    Attributes:
        home_scope: The scope declaring every probe.
        probes: Routine -> probe, in numbering order.
        loops: Loop probes, in allocation order.
    """

    def __init__(self, home_scope: HomeScope) -> None:
        self.home_scope = home_scope
        self.probes: Dict[RoutineRef, ProbeInfo] = {}
        self.loops: List[LoopProbe] = []

    @classmethod
    def build(
        cls, root: CallGraphNode, home_scope: HomeScope
    ) -> "ProbeRegistry":
        """Create a registry holding one probe per called graph routine.

        Args:
            root: Root of the call graph.
            home_scope: Scope the probe fields will be declared in.

        Returns:
            The populated registry.
        """
        registry = cls(home_scope)
        for child in root.children:
            for node in child.walk():
                if node.routine not in registry.probes:
                    registry._add(node.routine)
        return registry

    def _add(self, routine: RoutineRef) -> ProbeInfo:
        counter = len(self.probes) + 1
        probe = ProbeInfo(
            owner_scope=self.home_scope,
            probe_name=f"probe{counter}_{sanitize(routine.name)}",
            source_routine=routine,
        )
        self.probes[routine] = probe
        return probe

    def probe_for(self, routine: RoutineRef) -> Optional[ProbeInfo]:
        """Return the probe of `routine`, or None if it is not in the graph."""
        return self.probes.get(routine)

    def loop_probe(self, routine: RoutineRef, lineno: int) -> LoopProbe:
        """Allocate a probe for a loop of `routine` starting at `lineno`."""
        probe = LoopProbe(
            owner_scope=self.home_scope,
            probe_name=f"loop{len(self.loops) + 1}_{sanitize(routine.name)}",
            routine=routine,
            lineno=lineno,
        )
        self.loops.append(probe)
        return probe

    def loops_of(self, routine: RoutineRef) -> List[LoopProbe]:
        """Return the loop probes allocated inside `routine`."""
        return [loop for loop in self.loops if loop.routine is routine]

    def field_names(self) -> List[str]:
        """Return every probe field name in declaration order."""
        names = [probe.probe_name for probe in self.probes.values()]
        names.extend(loop.probe_name for loop in self.loops)
        return names

    def __contains__(self, routine: RoutineRef) -> bool:
        return routine in self.probes

    def __iter__(self) -> Iterator[RoutineRef]:
        return iter(self.probes)

    def __len__(self) -> int:
        return len(self.probes)
