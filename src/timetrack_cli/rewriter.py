"""Inject probe statements into the modules of an analysed project.

The rewrite runs in two phases over trees that are never modified:

  1. Mapping: every statement of every graph routine is classified and the
     ones to time are recorded as `InstrumentationSite` objects keyed by the
     original statement. Loop probes are allocated here, sequentially, so
     their numbering does not depend on scheduling.
  2. Application: each affected routine is rebuilt from copies in one
     traversal, putting ``start()`` / ``stop()`` around the mapped
     statements, and the result is spliced back into the module text in
     place of the original definition. Probe fields, imports and the report
     block are added in the same pass.

Calls buried in a larger expression (``x = load() + 1``, ``if check():``)
are hoisted into a timed temporary bound just before their statement, as
long as nothing with side effects is evaluated ahead of them. Calls in
positions that run conditionally or repeatedly (``while`` tests, ``and`` /
``or`` operands, comprehensions, lambdas) are left alone.

Everything outside the rewritten definitions is kept byte for byte.
"""

from __future__ import annotations

import ast
import copy
import enum
import io
import tokenize
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from tqdm.auto import tqdm

from timetrack_cli.call_graph import ExclusionSet
from timetrack_cli.models import (
    CallGraphNode,
    EventSink,
    InstrumentationSite,
    ModificationEvent,
    ProbeInfo,
    RoutineRef,
    SiteKind,
)
from timetrack_cli.probes import ProbeRegistry
from timetrack_cli.program import (
    CompilationUnit,
    ProgramModel,
    iter_calls,
    unwrap_call,
)
from timetrack_cli.report import ReportBuilder
from timetrack_cli.statements import StatementBuilder

__all__ = [
    "RESULT_PREFIX",
    "CallHoister",
    "RewrittenUnit",
    "RoutineBodyBuilder",
    "SourceRewriter",
    "UnitState",
    "hoist_slots",
    "substitute",
]

# Temporaries holding the value of a timed ``return <call>``
RESULT_PREFIX = "_timetrack_result"

_LOOP_TYPES = (ast.For, ast.AsyncFor, ast.While)
_NESTED_SCOPES = (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)
_CALL_SITES = (
    SiteKind.STANDALONE_CALL,
    SiteKind.BOUND_DECLARATION_CALL,
    SiteKind.RETURNED_CALL,
)
_EVENT_KINDS = {
    SiteKind.STANDALONE_CALL: "call",
    SiteKind.BOUND_DECLARATION_CALL: "call",
    SiteKind.RETURNED_CALL: "return",
    SiteKind.LOOP_CONSTRUCT: "loop",
    SiteKind.EMBEDDED_CALL: "call",
}
# Expressions whose parts do not all run exactly once, in order
_COMPREHENSIONS = (ast.ListComp, ast.SetComp, ast.DictComp, ast.GeneratorExp)
_EFFECTS = (
    ast.Call,
    ast.Await,
    ast.Yield,
    ast.YieldFrom,
    ast.NamedExpr,
)


class UnitState(enum.Enum):
    """Progress of one compilation unit through the rewrite."""

    UNVISITED = "unvisited"
    MAPPING = "mapping"
    APPLYING = "applying"
    DONE = "done"


@dataclass(eq=False)
class RewrittenUnit:
    """New text for one module that changed.

    Attributes:
        unit: The original module.
        source: The instrumented text.
        events: Modifications made to this module.
    """

    unit: CompilationUnit
    source: str
    events: List[ModificationEvent] = field(default_factory=list)

    @property
    def path(self) -> Path:
        return self.unit.path


@dataclass(eq=False)
class _UnitPlan:
    """Everything the application phase needs for one module."""

    unit: CompilationUnit
    routines: List[RoutineRef] = field(default_factory=list)
    sites: Dict[ast.stmt, InstrumentationSite] = field(default_factory=dict)
    hoists: Dict[ast.stmt, List[InstrumentationSite]] = field(
        default_factory=dict
    )
    instrumented: Set[RoutineRef] = field(default_factory=set)
    state: UnitState = UnitState.UNVISITED


@dataclass
class _LineEdit:
    """Replace lines ``start..end`` (1-based, inclusive) with `lines`.

    An edit with ``end < start`` inserts before line `start`.
    """

    start: int
    end: int
    lines: List[str]

    @property
    def is_insert(self) -> bool:
        return self.end < self.start


# =============================================================================
# Hoisting of embedded calls
# =============================================================================


def hoist_slots(stmt: ast.stmt) -> List[Tuple[ast.AST, str]]:
    """Return the expression slots of `stmt` that run once, before the rest.

    Each slot is an ``(owner, field)`` pair. Only these expressions are
    searched for calls to hoist.
    """
    if isinstance(stmt, (ast.Expr, ast.Assign, ast.Return, ast.AnnAssign)):
        return [(stmt, "value")] if stmt.value is not None else []
    if isinstance(stmt, ast.AugAssign) and isinstance(stmt.target, ast.Name):
        return [(stmt, "value")]
    if isinstance(stmt, ast.If):
        return [(stmt, "test")]
    if isinstance(stmt, (ast.For, ast.AsyncFor)):
        return [(stmt, "iter")]
    if isinstance(stmt, (ast.With, ast.AsyncWith)):
        return [(stmt.items[0], "context_expr")]
    if isinstance(stmt, ast.Raise) and stmt.exc is not None:
        return [(stmt, "exc")]
    if isinstance(stmt, ast.Match):
        return [(stmt, "subject")]
    return []


def _has_effects(node: ast.AST) -> bool:
    return any(isinstance(sub, _EFFECTS) for sub in ast.walk(node))


class CallHoister:
    """Finds the timed calls of an expression that can run ahead of it.

    The expression is walked in evaluation order. A timed call is hoisted
    only while nothing evaluated before it has side effects, so hoisting
    never swaps two calls. Hoisted calls are recorded innermost first.

    Attributes:
        sites: The hoisted calls, in the order their temporaries are bound.
    """

    def __init__(
        self,
        probe_of: Callable[[ast.Call], Optional[ProbeInfo]],
        next_temp: Callable[[], str],
    ) -> None:
        self.probe_of = probe_of
        self.next_temp = next_temp
        self.sites: List[InstrumentationSite] = []
        self.safe = True

    def visit_children(self, node: ast.AST) -> None:
        for child in ast.iter_child_nodes(node):
            self.visit(child)

    def visit(self, node: ast.AST) -> None:
        if isinstance(node, ast.Lambda):
            return
        if isinstance(node, _COMPREHENSIONS):
            self._skip(node)
        elif isinstance(node, ast.BoolOp):
            self.visit(node.values[0])
            for value in node.values[1:]:
                self._skip(value)
        elif isinstance(node, ast.IfExp):
            self.visit(node.test)
            self._skip(node.body)
            self._skip(node.orelse)
        elif isinstance(node, ast.Compare):
            self.visit(node.left)
            self.visit(node.comparators[0])
            for comparator in node.comparators[1:]:
                self._skip(comparator)
        elif isinstance(node, ast.Dict):
            for key, value in zip(node.keys, node.values):
                if key is not None:
                    self.visit(key)
                self.visit(value)
        elif isinstance(node, (ast.Call, ast.Await)):
            call = unwrap_call(node)
            probe = self.probe_of(call) if call is not None else None
            if probe is not None:
                self._timed(node, call, probe)
            else:
                self.visit_children(node)
                self.safe = False
        elif isinstance(node, (ast.Yield, ast.YieldFrom)):
            self.visit_children(node)
            self.safe = False
        else:
            self.visit_children(node)

    def _skip(self, node: ast.AST) -> None:
        """Leave a conditionally evaluated part alone."""
        if _has_effects(node):
            self.safe = False

    def _timed(
        self, expr: ast.expr, call: ast.Call, probe: ProbeInfo
    ) -> None:
        safe_before = self.safe
        # The callee and arguments run before the call itself
        self.visit_children(call)
        if not safe_before:
            self.safe = False
            return
        self.sites.append(
            InstrumentationSite(
                SiteKind.EMBEDDED_CALL,
                expr,
                probe,
                temp_name=self.next_temp(),
            )
        )
        # Everything `expr` evaluates moves ahead with it
        self.safe = True


def substitute(
    node: ast.AST, temps: Dict[ast.AST, str], keep_root: bool = False
) -> ast.AST:
    """Return a copy of `node` with hoisted expressions replaced by names.

    Args:
        node: Original expression.
        temps: Hoisted expression -> name of its temporary.
        keep_root: Copy `node` itself even if it is hoisted.

    Returns:
        The copy. The original is not modified.
    """
    if not keep_root and node in temps:
        return ast.Name(id=temps[node], ctx=ast.Load())
    new = copy.copy(node)
    for name, value in ast.iter_fields(node):
        if isinstance(value, ast.AST):
            setattr(new, name, substitute(value, temps))
        elif isinstance(value, list):
            setattr(
                new,
                name,
                [
                    substitute(v, temps) if isinstance(v, ast.AST) else v
                    for v in value
                ],
            )
    return new


def _substitute_slots(
    new: ast.stmt, stmt: ast.stmt, temps: Dict[ast.AST, str]
) -> ast.stmt:
    """Put the temporaries into the hoist slots of a rebuilt statement."""
    if isinstance(stmt, (ast.With, ast.AsyncWith)):
        first = copy.copy(stmt.items[0])
        first.context_expr = substitute(stmt.items[0].context_expr, temps)
        new.items = [first] + list(stmt.items[1:])
        return new
    for owner, name in hoist_slots(stmt):
        setattr(new, name, substitute(getattr(owner, name), temps))
    return new


# =============================================================================
# Application phase
# =============================================================================


class RoutineBodyBuilder:
    """Rebuilds statement blocks, wrapping the mapped statements.

    The builder works on the original statements and returns new ones; the
    original tree is only read.
    """

    def __init__(
        self,
        sites: Dict[ast.stmt, InstrumentationSite],
        statements: StatementBuilder,
        hoists: Optional[Dict[ast.stmt, List[InstrumentationSite]]] = None,
    ) -> None:
        self.sites = sites
        self.hoists = hoists or {}
        self.statements = statements
        self.applied: List[InstrumentationSite] = []

    def rebuild_block(self, stmts: Sequence[ast.stmt]) -> List[ast.stmt]:
        """Return a rebuilt copy of a block of statements."""
        out: List[ast.stmt] = []
        for stmt in stmts:
            rebuilt = self.rebuild(stmt)
            hoisted = self.hoists.get(stmt)
            if hoisted:
                temps = {h.node: h.temp_name for h in hoisted}
                for h in hoisted:
                    self.applied.append(h)
                    out.extend(
                        [
                            self.statements.start(h.probe),
                            self.statements.bind_temp(
                                h.temp_name,
                                substitute(h.node, temps, keep_root=True),
                            ),
                            self.statements.stop(h.probe),
                        ]
                    )
                rebuilt = _substitute_slots(rebuilt, stmt, temps)

            site = self.sites.get(stmt)
            if site is None:
                out.append(rebuilt)
                continue

            self.applied.append(site)
            start = self.statements.start(site.probe)
            stop = self.statements.stop(site.probe)
            if site.kind is SiteKind.RETURNED_CALL:
                out.extend(
                    [
                        start,
                        self.statements.bind_temp(
                            site.temp_name, rebuilt.value
                        ),
                        stop,
                        self.statements.return_name(site.temp_name),
                    ]
                )
            else:
                out.extend([start, rebuilt, stop])
        return out

    def rebuild(self, stmt: ast.stmt) -> ast.stmt:
        """Return a copy of `stmt` whose nested blocks are rebuilt."""
        if isinstance(stmt, _NESTED_SCOPES):
            return copy.deepcopy(stmt)

        new = copy.copy(stmt)
        touched = False
        for name in ("body", "orelse", "finalbody"):
            block = getattr(stmt, name, None)
            if isinstance(block, list) and block:
                setattr(new, name, self.rebuild_block(block))
                touched = True

        if isinstance(stmt, (ast.Try, getattr(ast, "TryStar", ast.Try))):
            new.handlers = []
            for handler in stmt.handlers:
                new_handler = copy.copy(handler)
                new_handler.body = self.rebuild_block(handler.body)
                new.handlers.append(new_handler)
            touched = True

        if isinstance(stmt, ast.Match):
            new.cases = []
            for case in stmt.cases:
                new_case = copy.copy(case)
                new_case.body = self.rebuild_block(case.body)
                new.cases.append(new_case)
            touched = True

        if not touched:
            return copy.deepcopy(stmt)
        return new


# =============================================================================
# Rendering helpers
# =============================================================================


def _string_continuation_lines(text: str) -> Set[int]:
    """Return the 1-based lines that continue a multi-line string literal."""
    inside: Set[int] = set()
    # f-strings are split into several tokens from Python 3.12
    fstring_start = getattr(tokenize, "FSTRING_START", None)
    fstring_end = getattr(tokenize, "FSTRING_END", None)
    open_fstrings: List[int] = []
    tokens = tokenize.generate_tokens(io.StringIO(text).readline)
    for tok in tokens:
        if tok.type == tokenize.STRING and tok.end[0] > tok.start[0]:
            inside.update(range(tok.start[0] + 1, tok.end[0] + 1))
        elif fstring_start is not None and tok.type == fstring_start:
            open_fstrings.append(tok.start[0])
        elif fstring_end is not None and tok.type == fstring_end:
            first = open_fstrings.pop()
            inside.update(range(first + 1, tok.end[0] + 1))
    return inside


def indent_source(text: str, prefix: str) -> List[str]:
    """Indent rendered code, leaving the inside of string literals alone.

    Args:
        text: Code as produced by ``ast.unparse``.
        prefix: Whitespace to put in front of every line.

    Returns:
        The indented lines, without line endings.
    """
    inside = _string_continuation_lines(text)
    out = []
    for number, line in enumerate(text.splitlines(), start=1):
        if line and number not in inside:
            line = prefix + line
        out.append(line)
    return out


def _render(node: ast.AST) -> str:
    """Unparse a tree mixing original and generated nodes."""
    return ast.unparse(ast.fix_missing_locations(node))


def _first_line(node: ast.stmt) -> int:
    """Return the first line of a statement, decorators included."""
    decorators = getattr(node, "decorator_list", None) or []
    return min([node.lineno] + [d.lineno for d in decorators])


def _leading_whitespace(lines: Sequence[str], node: ast.stmt) -> str:
    line = lines[node.lineno - 1]
    return line[: len(line) - len(line.lstrip())]


def _is_docstring(stmt: ast.stmt) -> bool:
    return (
        isinstance(stmt, ast.Expr)
        and isinstance(stmt.value, ast.Constant)
        and isinstance(stmt.value.value, str)
    )


def _is_future_import(stmt: ast.stmt) -> bool:
    return isinstance(stmt, ast.ImportFrom) and stmt.module == "__future__"


def split_lines(source: str) -> List[str]:
    """Split on the line breaks Python itself counts, keeping them."""
    return io.StringIO(source, newline="").readlines()


def _newline_of(source: str) -> str:
    return "\r\n" if "\r\n" in source else "\n"


def apply_line_edits(source: str, edits: Sequence[_LineEdit]) -> str:
    """Apply non overlapping line edits to `source`.

    Inserts are placed before a replacement starting on the same line.
    """
    newline = _newline_of(source)
    lines = split_lines(source)
    if lines and not lines[-1].endswith(("\n", "\r")):
        lines[-1] += newline

    out: List[str] = []
    pos = 1
    for edit in sorted(edits, key=lambda e: (e.start, not e.is_insert)):
        out.extend(lines[pos - 1 : edit.start - 1])
        pos = max(pos, edit.start)
        out.extend(line + newline for line in edit.lines)
        if not edit.is_insert:
            pos = edit.end + 1
    out.extend(lines[pos - 1 :])
    return "".join(out)


# =============================================================================
# Rewriter
# =============================================================================


class SourceRewriter:
    """Instruments the modules holding the routines of a call graph.

    Attributes:
        exclusions: Callees that are never wrapped.
        report_variable: Name of the list collecting report lines in the
            entry routine.
        report_file: File the report is also appended to, if any.
        generate_report: Whether the entry routine gets a report block.
        jobs: Worker threads used by the application phase.
        sink: Receives every modification event.
        progress: Show a progress bar over modules.
    """

    def __init__(
        self,
        exclusions: Optional[ExclusionSet] = None,
        report_variable: str = "timing_report",
        report_file: Optional[str] = None,
        generate_report: bool = True,
        jobs: int = 1,
        sink: Optional[EventSink] = None,
        progress: bool = False,
    ) -> None:
        if not report_variable.isidentifier():
            raise ValueError(
                f"Report variable {report_variable!r} is not a valid name."
            )
        if jobs < 1:
            raise ValueError(f"jobs must be at least 1 (got {jobs}).")
        if exclusions is None:
            exclusions = ExclusionSet()
        self.exclusions = exclusions
        self.report_variable = report_variable
        self.report_file = report_file
        self.generate_report = generate_report
        self.jobs = jobs
        self.sink = sink
        self.progress = progress
        self.states: Dict[str, UnitState] = {}

    def rewrite(
        self,
        program_model: ProgramModel,
        graph: CallGraphNode,
        registry: ProbeRegistry,
    ) -> List[RewrittenUnit]:
        """Instrument every module touched by the graph.

        Args:
            program_model: Model the graph was resolved against.
            graph: Root of the call graph; its routine is the entry.
            registry: Probes of the graph. Loop probes are added to it.

        Returns:
            One entry per module whose text changed, in module order.
        """
        self._model = program_model
        self._graph = graph
        self._registry = registry

        plans: Dict[str, _UnitPlan] = {}
        for unit in program_model.list_compilation_units():
            plans[unit.module] = _UnitPlan(unit)
            self.states[unit.module] = UnitState.UNVISITED

        # Mapping, in graph pre-order (the entry first)
        for routine in graph.routines():
            unit = program_model.unit_for(routine)
            plan = plans.setdefault(unit.module, _UnitPlan(unit))
            if plan.state is UnitState.UNVISITED:
                self._set_state(plan, UnitState.MAPPING)
            plan.routines.append(routine)
            self._map_routine(routine, plan)

        home = registry.home_scope.module
        if self.generate_report and home in plans:
            plans[home].instrumented.add(graph.routine)

        # Application
        todo = [p for p in plans.values() if p.state is UnitState.MAPPING]
        for plan in todo:
            self._set_state(plan, UnitState.APPLYING)

        bar = tqdm(
            total=len(todo),
            desc="Rewriting modules",
            unit="module",
            disable=not self.progress,
        )
        results: List[Optional[RewrittenUnit]] = []
        try:
            if self.jobs > 1 and len(todo) > 1:
                with ThreadPoolExecutor(max_workers=self.jobs) as pool:
                    for result in pool.map(self._apply, todo):
                        results.append(result)
                        bar.update(1)
            else:
                for plan in todo:
                    results.append(self._apply(plan))
                    bar.update(1)
        finally:
            bar.close()

        return [r for r in results if r is not None]

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------

    def _set_state(self, plan: _UnitPlan, state: UnitState) -> None:
        plan.state = state
        self.states[plan.unit.module] = state

    def _probe_of_call(
        self, call: Optional[ast.Call], routine: RoutineRef
    ) -> Optional[ProbeInfo]:
        """Return the probe of the routine a call invokes, if it is timed."""
        if call is None:
            return None
        target = self._model.resolve_call_target(call, routine)
        if target is None or not self._model.is_project_routine(target):
            return None
        if target in self.exclusions:
            return None
        return self._registry.probe_for(target)

    def _contains_timed_call(
        self, stmts: Sequence[ast.stmt], routine: RoutineRef
    ) -> bool:
        return any(
            self._probe_of_call(call, routine) is not None
            for call in iter_calls(stmts)
        )

    def _map_routine(self, routine: RoutineRef, plan: _UnitPlan) -> None:
        taken = {
            node.id
            for node in ast.walk(routine.node)
            if isinstance(node, ast.Name)
        }
        taken.update(
            node.arg
            for node in ast.walk(routine.node)
            if isinstance(node, ast.arg)
        )
        self._temp_counter = 0
        self._taken = taken
        before = len(plan.sites) + len(plan.hoists)
        self._map_block(self._model.get_body(routine), routine, plan)
        if len(plan.sites) + len(plan.hoists) > before:
            plan.instrumented.add(routine)

    def _next_temp(self) -> str:
        while True:
            self._temp_counter += 1
            name = f"{RESULT_PREFIX}{self._temp_counter}"
            if name not in self._taken:
                self._taken.add(name)
                return name

    def _map_block(
        self,
        stmts: Sequence[ast.stmt],
        routine: RoutineRef,
        plan: _UnitPlan,
    ) -> None:
        for stmt in stmts:
            self._map_statement(stmt, routine, plan)

    def _map_statement(
        self, stmt: ast.stmt, routine: RoutineRef, plan: _UnitPlan
    ) -> None:
        if isinstance(stmt, _NESTED_SCOPES):
            return

        site: Optional[InstrumentationSite] = None
        if isinstance(stmt, ast.Expr):
            probe = self._probe_of_call(unwrap_call(stmt.value), routine)
            if probe is not None:
                site = InstrumentationSite(
                    SiteKind.STANDALONE_CALL, stmt, probe
                )
        elif isinstance(stmt, (ast.Assign, ast.AnnAssign)):
            probe = self._probe_of_call(unwrap_call(stmt.value), routine)
            if probe is not None:
                site = InstrumentationSite(
                    SiteKind.BOUND_DECLARATION_CALL, stmt, probe
                )
        elif isinstance(stmt, ast.Return):
            probe = self._probe_of_call(unwrap_call(stmt.value), routine)
            if probe is not None:
                site = InstrumentationSite(
                    SiteKind.RETURNED_CALL,
                    stmt,
                    probe,
                    temp_name=self._next_temp(),
                )
        elif isinstance(stmt, _LOOP_TYPES):
            if self._contains_timed_call(stmt.body + stmt.orelse, routine):
                loop = self._registry.loop_probe(routine, stmt.lineno)
                site = InstrumentationSite(SiteKind.LOOP_CONSTRUCT, stmt, loop)

        if site is not None:
            plan.sites[stmt] = site

        hoister = CallHoister(
            lambda call: self._probe_of_call(call, routine), self._next_temp
        )
        if site is not None and site.kind in _CALL_SITES:
            hoister.visit_children(unwrap_call(stmt.value))
        else:
            for owner, name in hoist_slots(stmt):
                hoister.visit(getattr(owner, name))
        if hoister.sites:
            plan.hoists[stmt] = hoister.sites

        for name in ("body", "orelse", "finalbody"):
            block = getattr(stmt, name, None)
            if isinstance(block, list):
                self._map_block(block, routine, plan)
        for handler in getattr(stmt, "handlers", []):
            self._map_block(handler.body, routine, plan)
        for case in getattr(stmt, "cases", []):
            self._map_block(case.body, routine, plan)

    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------

    def _emit(self, events: List[ModificationEvent], event) -> None:
        events.append(event)
        if self.sink is not None:
            self.sink(event)

    def _apply(self, plan: _UnitPlan) -> Optional[RewrittenUnit]:
        unit = plan.unit
        events: List[ModificationEvent] = []
        if not unit.path.is_file():
            self._emit(
                events,
                ModificationEvent(
                    "warning",
                    f"{unit.rel_path} is missing, skipped",
                    unit.path,
                ),
            )
            self._set_state(plan, UnitState.DONE)
            return None

        home_scope = self._registry.home_scope
        is_home = unit.module == home_scope.module
        statements = StatementBuilder(home_scope, unit.module)
        lines = [line.rstrip("\r\n") for line in split_lines(unit.source)]
        edits: List[_LineEdit] = []

        for routine in plan.routines:
            if routine not in plan.instrumented:
                continue
            edits.append(
                self._rebuild_routine(routine, plan, statements, lines, events)
            )

        if is_home:
            edits.append(self._field_edit(unit, lines))
            self._emit(
                events,
                ModificationEvent(
                    "fields", home_scope.display_name, unit.path
                ),
            )
            line = self._import_line(unit)
            edits.insert(
                0,
                _LineEdit(
                    start=line,
                    end=line - 1,
                    lines=[_render(statements.stopwatch_import())],
                ),
            )

        self._set_state(plan, UnitState.DONE)
        if not edits:
            return None
        source = apply_line_edits(unit.source, edits)
        if source == unit.source:
            return None
        return RewrittenUnit(unit=unit, source=source, events=events)

    def _rebuild_routine(
        self,
        routine: RoutineRef,
        plan: _UnitPlan,
        statements: StatementBuilder,
        lines: Sequence[str],
        events: List[ModificationEvent],
    ) -> _LineEdit:
        node = routine.node
        body_builder = RoutineBodyBuilder(
            plan.sites, statements, plan.hoists
        )
        new_def = copy.copy(node)
        new_def.body = body_builder.rebuild_block(node.body)

        for site in body_builder.applied:
            self._emit(
                events,
                ModificationEvent(
                    _EVENT_KINDS[site.kind],
                    f"{routine.qualname} -> {site.probe.probe_name}",
                    plan.unit.path,
                ),
            )

        if routine is self._graph.routine and self.generate_report:
            report = statements.report(
                routine.qualname,
                ReportBuilder(self.exclusions.patterns).build(
                    self._graph, self._registry
                ),
                self.report_variable,
                self.report_file,
            )
            body = new_def.body
            if body and isinstance(body[-1], ast.Return):
                new_def.body = body[:-1] + report + body[-1:]
            else:
                new_def.body = body + report
            self._emit(
                events,
                ModificationEvent("report", routine.qualname, plan.unit.path),
            )

        if statements.needs_home_import and body_builder.applied:
            # Imported on call so the two modules can import each other
            body = new_def.body
            at = 1 if body and _is_docstring(body[0]) else 0
            new_def.body = (
                body[:at] + [statements.home_import()] + body[at:]
            )

        rendered = _render(new_def)
        return _LineEdit(
            start=_first_line(node),
            end=node.end_lineno,
            lines=indent_source(rendered, _leading_whitespace(lines, node)),
        )

    def _field_edit(
        self, unit: CompilationUnit, lines: Sequence[str]
    ) -> _LineEdit:
        """Declare every probe field at the top of the home scope."""
        home_scope = self._registry.home_scope
        names = self._registry.field_names()
        fields = [_render(StatementBuilder.field(n)) for n in names]

        if home_scope.class_name is None:
            line = self._first_code_line(unit.tree.body)
            return _LineEdit(start=line, end=line - 1, lines=fields + [""])

        cls = next(
            node
            for node in unit.tree.body
            if isinstance(node, ast.ClassDef)
            and node.name == home_scope.class_name
        )
        body = list(cls.body)
        if len(body) > 1 and _is_docstring(body[0]):
            body = body[1:]
        anchor = body[0]
        prefix = _leading_whitespace(lines, anchor)
        start = _first_line(anchor)
        return _LineEdit(
            start=start,
            end=start - 1,
            lines=[prefix + text for text in fields] + [""],
        )

    @staticmethod
    def _first_code_line(body: Sequence[ast.stmt]) -> int:
        """Return the first line after the docstring and the imports."""
        for stmt in body:
            if _is_docstring(stmt) and stmt is body[0]:
                continue
            if isinstance(stmt, (ast.Import, ast.ImportFrom)):
                continue
            return _first_line(stmt)
        return body[-1].end_lineno + 1 if body else 1

    @staticmethod
    def _import_line(unit: CompilationUnit) -> int:
        """Return the line new imports are inserted before."""
        body = unit.tree.body
        for stmt in body:
            if _is_docstring(stmt) and stmt is body[0]:
                continue
            if _is_future_import(stmt):
                continue
            return _first_line(stmt)
        return body[-1].end_lineno + 1 if body else 1
