"""Program model over a directory of Python sources.

The rest of the package only talks to the `ProgramModel` protocol:

  - resolve_entry_routine(type_name, routine_name) -> RoutineRef | None
  - get_body(routine) -> list of statements
  - resolve_call_target(call, caller) -> RoutineRef | None
  - list_compilation_units() -> list of CompilationUnit
  - is_project_routine(routine) -> bool

`PythonProject` implements it with the standard library `ast` module. Each
module is parsed once; module level functions, classes and their methods are
indexed, one `RoutineRef` per definition. Call resolution is static and
best-effort:

  * plain names (module functions, imported functions),
  * ``self.m()`` / ``cls.m()`` including project base classes,
  * ``super().m()``,
  * ``Class.m()`` and ``module.f()`` through imports (relative ones too),
  * ``self.attr.m()`` when the attribute is bound to ``Cls(...)`` or
    annotated with a project class,
  * locals bound to ``Cls(...)`` and annotated parameters,
  * otherwise, when enabled, the one project method with that name,
    unless the receiver is a parameter or local variable.
"""

from __future__ import annotations

import ast
import fnmatch
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import (
    Dict,
    Iterator,
    List,
    Optional,
    Protocol,
    Sequence,
    Tuple,
)

from timetrack_cli.models import (
    EventSink,
    HomeScope,
    ModificationEvent,
    RoutineRef,
)

__all__ = [
    "CompilationUnit",
    "ClassInfo",
    "ModuleIndex",
    "ProgramModel",
    "PythonProject",
    "iter_calls",
    "matches_any",
    "unwrap_call",
]

# Directories never considered part of the project's own code
IGNORE_DIRS = {
    ".git",
    ".hg",
    ".svn",
    "__pycache__",
    ".venv",
    "venv",
    "env",
    ".env",
    ".tox",
    ".nox",
    ".mypy_cache",
    ".pytest_cache",
    ".ruff_cache",
    "build",
    "dist",
    "site-packages",
    "node_modules",
    ".timetrack",
}

_DEF_TYPES = (ast.FunctionDef, ast.AsyncFunctionDef)
_SCOPE_TYPES = (
    ast.FunctionDef,
    ast.AsyncFunctionDef,
    ast.ClassDef,
    ast.Lambda,
)
_LITERAL_TYPES = (
    ast.Constant,
    ast.JoinedStr,
    ast.List,
    ast.Tuple,
    ast.Dict,
    ast.Set,
    ast.ListComp,
    ast.DictComp,
    ast.SetComp,
    ast.GeneratorExp,
)


# =============================================================================
# Data model
# =============================================================================


@dataclass(eq=False)
class CompilationUnit:
    """One parsed Python module.

    Attributes:
        path: Absolute path of the file.
        rel_path: Path relative to the project root.
        module: Dotted module name.
        source: Original text, exactly as read.
        tree: Parsed module. Never mutated.
        is_package: True for ``__init__.py`` modules.
    """

    path: Path
    rel_path: Path
    module: str
    source: str
    tree: ast.Module
    is_package: bool = False


@dataclass(eq=False)
class ClassInfo:
    """Index entry for a module level class.

    Attributes:
        name: Class name.
        module: Dotted name of the defining module.
        node: The ``ast.ClassDef``.
        methods: Method name -> routine (last definition wins).
        attribute_types: Attribute name -> expression naming its class,
            collected from ``self.x = Cls(...)``, ``x = Cls(...)`` and
            ``x: Cls`` in the class.
    """

    name: str
    module: str
    node: ast.ClassDef
    methods: Dict[str, RoutineRef] = field(default_factory=dict)
    attribute_types: Dict[str, ast.expr] = field(default_factory=dict)


@dataclass(eq=False)
class ModuleIndex:
    """Symbols defined and imported by one module.

    Attributes:
        unit: The parsed module.
        functions: Module level functions.
        classes: Module level classes.
        imports: Local name -> dotted target (module or module attribute).
        routines: Every routine defined in the module, in source order.
    """

    unit: CompilationUnit
    functions: Dict[str, RoutineRef] = field(default_factory=dict)
    classes: Dict[str, ClassInfo] = field(default_factory=dict)
    imports: Dict[str, str] = field(default_factory=dict)
    routines: List[RoutineRef] = field(default_factory=list)


@dataclass
class _LocalScope:
    """Names bound inside one routine and the classes some of them hold."""

    names: set
    types: Dict[str, ast.expr]
    self_name: Optional[str]


class ProgramModel(Protocol):
    """What the analysis and rewrite need from a program model."""

    def resolve_entry_routine(
        self, type_name: Optional[str], routine_name: str
    ) -> Optional[RoutineRef]: ...

    def get_body(self, routine: RoutineRef) -> List[ast.stmt]: ...

    def resolve_call_target(
        self, call: ast.Call, caller: RoutineRef
    ) -> Optional[RoutineRef]: ...

    def list_compilation_units(self) -> List[CompilationUnit]: ...

    def is_project_routine(self, routine: RoutineRef) -> bool: ...

    def unit_for(self, routine: RoutineRef) -> CompilationUnit: ...

    def home_scope_for(self, routine: RoutineRef) -> HomeScope: ...


# =============================================================================
# Syntax helpers
# =============================================================================


def iter_calls(nodes: Sequence[ast.AST]) -> Iterator[ast.Call]:
    """Yield every call expression under `nodes` in source order.

    Nested function, class and lambda definitions are not entered; their
    calls belong to another routine.

    Args:
        nodes: Statements (or expressions) to search.

    Yields:
        Each ``ast.Call`` found, outer calls before the calls in their
        arguments.
    """
    for node in nodes:
        if isinstance(node, _SCOPE_TYPES):
            continue
        if isinstance(node, ast.Call):
            yield node
        yield from iter_calls(list(ast.iter_child_nodes(node)))


def unwrap_call(expr: Optional[ast.expr]) -> Optional[ast.Call]:
    """Return the call in ``f(...)`` or ``await f(...)``, else None."""
    if isinstance(expr, ast.Await):
        expr = expr.value
    if isinstance(expr, ast.Call):
        return expr
    return None


def _receiver_head(expr: ast.expr) -> Optional[str]:
    """Return the name a receiver expression starts from, if any."""
    while isinstance(expr, (ast.Attribute, ast.Subscript, ast.Call)):
        expr = expr.func if isinstance(expr, ast.Call) else expr.value
    if isinstance(expr, ast.Name):
        return expr.id
    return None


def _dotted_name(expr: ast.expr) -> Optional[str]:
    """Return ``a.b.c`` for a chain of attribute accesses on a name."""
    parts: List[str] = []
    while isinstance(expr, ast.Attribute):
        parts.append(expr.attr)
        expr = expr.value
    if not isinstance(expr, ast.Name):
        return None
    parts.append(expr.id)
    return ".".join(reversed(parts))


def _annotation_candidates(annotation: Optional[ast.expr]) -> List[ast.expr]:
    """Return class-like expressions found in a type annotation.

    Handles ``Cls``, ``pkg.Cls``, ``"Cls"``, ``Optional[Cls]`` and
    ``Cls | None``.
    """
    if annotation is None:
        return []
    if isinstance(annotation, (ast.Name, ast.Attribute)):
        return [annotation]
    if isinstance(annotation, ast.Constant) and isinstance(
        annotation.value, str
    ):
        try:
            parsed = ast.parse(annotation.value, mode="eval").body
        except SyntaxError:
            return []
        return _annotation_candidates(parsed)
    if isinstance(annotation, ast.Subscript):
        if _dotted_name(annotation.value) in ("Optional", "typing.Optional"):
            return _annotation_candidates(annotation.slice)
        return []
    if isinstance(annotation, ast.BinOp) and isinstance(
        annotation.op, ast.BitOr
    ):
        return _annotation_candidates(
            annotation.left
        ) + _annotation_candidates(annotation.right)
    return []


def _first_positional(node: ast.AST) -> Optional[str]:
    """Return the name of a definition's first positional parameter."""
    args = node.args  # type: ignore[attr-defined]
    positional = list(args.posonlyargs) + list(args.args)
    return positional[0].arg if positional else None


def _decorator_names(node: ast.AST) -> List[str]:
    """Return the dotted names of a definition's decorators."""
    names = []
    for dec in getattr(node, "decorator_list", []):
        if isinstance(dec, ast.Call):
            dec = dec.func
        name = _dotted_name(dec)
        if name:
            names.append(name)
    return names


def _iter_scope_nodes(stmts: Sequence[ast.AST]) -> Iterator[ast.AST]:
    """Yield every node under `stmts` without entering nested scopes.

    Nested definitions are yielded themselves (their names are bound in the
    enclosing scope) but their bodies are not visited.
    """
    for stmt in stmts:
        yield stmt
        if isinstance(stmt, _SCOPE_TYPES):
            continue
        yield from _iter_scope_nodes(
            list(ast.iter_child_nodes(stmt))  # type: ignore[arg-type]
        )


# =============================================================================
# The ast backed program model
# =============================================================================


class PythonProject:
    """Program model built from every Python module under a directory.

    Modules are named relative to ``<root>/src`` when it exists (src layout)
    and relative to ``root`` otherwise.
    """

    def __init__(
        self,
        root: Path | str,
        packages: Optional[Sequence[str]] = None,
        ambiguous_fallback: bool = False,
        sink: Optional[EventSink] = None,
    ) -> None:
        """Index the project.

        Args:
            root: Project directory (walked recursively).
            packages: Optional module prefixes owning the "project's own
                code"; routines outside them are treated as foreign.
            ambiguous_fallback: Resolve calls on receivers of unknown type
                to the project method with a matching name, when exactly
                one exists. Receivers held in a parameter or local
                variable are never guessed.
            sink: Receives a warning event per module that cannot be read
                or parsed.

        Raises:
            FileNotFoundError: If `root` does not exist.
            ValueError: If `root` is not a directory.
        """
        self.root = Path(root).expanduser().resolve()
        if not self.root.exists():
            raise FileNotFoundError(f"Project directory not found: {root}")
        if not self.root.is_dir():
            raise ValueError(f"Project path {root} is not a directory.")

        self.packages = [p for p in (packages or []) if p]
        self.ambiguous_fallback = ambiguous_fallback
        self._sink = sink
        self.warnings: List[str] = []

        self.modules: Dict[str, ModuleIndex] = {}
        self._scopes: Dict[RoutineRef, _LocalScope] = {}
        self._methods_by_name: Dict[str, List[RoutineRef]] = {}

        self._load()

    # ------------------------------------------------------------------
    # Loading and indexing
    # ------------------------------------------------------------------

    def _source_roots(self) -> List[Path]:
        """Return the directories module names are computed against."""
        roots = []
        src = self.root / "src"
        if src.is_dir():
            roots.append(src)
        roots.append(self.root)
        return roots

    def _module_name(self, path: Path) -> Tuple[str, bool]:
        """Return the dotted module name of `path` and if it is a package."""
        for base in self._source_roots():
            try:
                rel = path.relative_to(base)
            except ValueError:
                continue
            parts = list(rel.with_suffix("").parts)
            is_package = parts[-1] == "__init__"
            if is_package:
                parts = parts[:-1]
            return ".".join(parts), is_package
        raise ValueError(f"{path} is outside {self.root}")

    def _warn(self, message: str, path: Optional[Path] = None) -> None:
        self.warnings.append(message)
        if self._sink is not None:
            self._sink(ModificationEvent("warning", message, path))

    def _load(self) -> None:
        """Walk, parse and index every module."""
        files: List[Path] = []
        for dirpath, dirnames, names in os.walk(self.root):
            dirnames[:] = sorted(
                d
                for d in dirnames
                if d not in IGNORE_DIRS and not d.endswith(".egg-info")
            )
            for n in sorted(names):
                if n.endswith(".py"):
                    files.append(Path(dirpath) / n)

        for path in files:
            unit = self._parse_unit(path)
            if unit is None:
                continue
            if not unit.module or unit.module in self.modules:
                # An empty name is a top level __init__.py; a duplicate
                # comes from a file shadowed by the src/ layout.
                continue
            self.modules[unit.module] = self._index_unit(unit)

        # Attribute types need every class indexed first
        for index in self.modules.values():
            for cls in index.classes.values():
                self._collect_attribute_types(cls)

    def _parse_unit(self, path: Path) -> Optional[CompilationUnit]:
        """Read and parse one module, warning (not failing) on errors."""
        try:
            with open(path, "r", encoding="utf-8", newline="") as fh:
                source = fh.read()
        except (OSError, UnicodeDecodeError) as e:
            self._warn(f"Could not read {path}: {e}", path)
            return None

        try:
            tree = ast.parse(source, filename=str(path))
        except SyntaxError as e:
            self._warn(
                f"Could not parse {path}: {e.msg} (line {e.lineno})", path
            )
            return None

        module, is_package = self._module_name(path)
        return CompilationUnit(
            path=path,
            rel_path=path.relative_to(self.root),
            module=module,
            source=source,
            tree=tree,
            is_package=is_package,
        )

    def _index_unit(self, unit: CompilationUnit) -> ModuleIndex:
        """Index definitions and imports of one module."""
        index = ModuleIndex(unit=unit)

        for stmt in unit.tree.body:
            if isinstance(stmt, _DEF_TYPES):
                ref = self._make_ref(unit, stmt, None)
                index.functions[stmt.name] = ref
                index.routines.append(ref)
            elif isinstance(stmt, ast.ClassDef):
                cls = ClassInfo(name=stmt.name, module=unit.module, node=stmt)
                for item in stmt.body:
                    if isinstance(item, _DEF_TYPES):
                        ref = self._make_ref(unit, item, stmt.name)
                        cls.methods[item.name] = ref
                        index.routines.append(ref)
                        self._methods_by_name.setdefault(item.name, []).append(
                            ref
                        )
                index.classes[stmt.name] = cls

        # Imports anywhere at module or class level, and inside functions
        for node in ast.walk(unit.tree):
            if isinstance(node, ast.Import):
                for alias in node.names:
                    if alias.asname:
                        index.imports[alias.asname] = alias.name
                    else:
                        top = alias.name.split(".")[0]
                        index.imports.setdefault(top, top)
            elif isinstance(node, ast.ImportFrom):
                base = self._import_base(unit, node)
                if base is None:
                    continue
                for alias in node.names:
                    if alias.name == "*":
                        continue
                    target = f"{base}.{alias.name}" if base else alias.name
                    index.imports[alias.asname or alias.name] = target

        return index

    @staticmethod
    def _make_ref(
        unit: CompilationUnit, node: ast.AST, class_name: Optional[str]
    ) -> RoutineRef:
        name = node.name  # type: ignore[attr-defined]
        return RoutineRef(
            module=unit.module,
            qualname=f"{class_name}.{name}" if class_name else name,
            name=name,
            class_name=class_name,
            path=unit.path,
            node=node,
        )

    @staticmethod
    def _import_base(
        unit: CompilationUnit, node: ast.ImportFrom
    ) -> Optional[str]:
        """Return the absolute module a ``from ... import`` reads from."""
        if node.level == 0:
            return node.module or ""
        package = unit.module.split(".") if unit.module else []
        if not unit.is_package:
            package = package[:-1]
        drop = node.level - 1
        if drop > len(package):
            return None
        package = package[: len(package) - drop]
        if node.module:
            package.append(node.module)
        return ".".join(package)

    def _collect_attribute_types(self, cls: ClassInfo) -> None:
        """Record which project class each attribute of `cls` holds."""
        for item in cls.node.body:
            if isinstance(item, ast.Assign) and isinstance(
                item.value, ast.Call
            ):
                for target in item.targets:
                    if isinstance(target, ast.Name):
                        cls.attribute_types.setdefault(
                            target.id, item.value.func
                        )
            elif isinstance(item, ast.AnnAssign) and isinstance(
                item.target, ast.Name
            ):
                candidates = _annotation_candidates(item.annotation)
                if isinstance(item.value, ast.Call):
                    candidates.insert(0, item.value.func)
                if candidates:
                    cls.attribute_types.setdefault(
                        item.target.id, candidates[0]
                    )

        for method in cls.methods.values():
            self_name = _first_positional(method.node)
            if self_name is None:
                continue
            body = method.node.body  # type: ignore[attr-defined]
            for node in _iter_scope_nodes(body):
                target = value = annotation = None
                if isinstance(node, ast.Assign) and len(node.targets) == 1:
                    target, value = node.targets[0], node.value
                elif isinstance(node, ast.AnnAssign):
                    target, value = node.target, node.value
                    annotation = node.annotation
                else:
                    continue
                if not (
                    isinstance(target, ast.Attribute)
                    and isinstance(target.value, ast.Name)
                    and target.value.id == self_name
                ):
                    continue
                if isinstance(value, ast.Call):
                    cls.attribute_types.setdefault(target.attr, value.func)
                else:
                    candidates = _annotation_candidates(annotation)
                    if candidates:
                        cls.attribute_types.setdefault(
                            target.attr, candidates[0]
                        )

    # ------------------------------------------------------------------
    # Symbol lookup
    # ------------------------------------------------------------------

    def _lookup_dotted(self, dotted: str, _depth: int = 0):
        """Resolve an absolute dotted name to a project symbol.

        Returns:
            ``("module", ModuleIndex)``, ``("class", ClassInfo)``,
            ``("function", RoutineRef)``, ``("external", None)`` for names
            outside the project, or None.
        """
        if _depth > 10:
            return None
        if dotted in self.modules:
            return ("module", self.modules[dotted])
        if "." not in dotted:
            return ("external", None)

        head, name = dotted.rsplit(".", 1)
        owner = self._lookup_dotted(head, _depth + 1)
        if owner is None:
            return None
        kind, obj = owner
        if kind == "module":
            if name in obj.functions:
                return ("function", obj.functions[name])
            if name in obj.classes:
                return ("class", obj.classes[name])
            if name in obj.imports:
                # Re-exported through the package
                return self._lookup_dotted(obj.imports[name], _depth + 1)
            return None
        if kind == "class":
            method = self._find_method(obj, name)
            return ("function", method) if method is not None else None
        if kind == "external":
            return ("external", None)
        return None

    def _resolve_name(self, index: ModuleIndex, name: str):
        """Resolve a bare name in the namespace of a module."""
        if name in index.functions:
            return ("function", index.functions[name])
        if name in index.classes:
            return ("class", index.classes[name])
        if name in index.imports:
            return self._lookup_dotted(index.imports[name])
        return None

    def _resolve_expr(self, index: ModuleIndex, expr: ast.expr):
        """Resolve a ``Name`` / dotted ``Attribute`` in a module namespace."""
        dotted = _dotted_name(expr)
        if dotted is None:
            return None
        head, _, rest = dotted.partition(".")
        if (
            rest
            and head in index.imports
            and head not in index.functions
            and head not in index.classes
        ):
            # import a.b.c / import a.b as x: resolve the whole path at once
            return self._lookup_dotted(f"{index.imports[head]}.{rest}")
        found = self._resolve_name(index, head)
        if found is None or not rest:
            return found
        kind, obj = found
        if kind == "module":
            return self._lookup_dotted(f"{obj.unit.module}.{rest}")
        if kind == "class":
            method = self._find_method(obj, rest)
            return ("function", method) if method is not None else None
        if kind == "external":
            return ("external", None)
        return None

    def _resolve_class(
        self, index: ModuleIndex, expr: ast.expr
    ) -> Optional[ClassInfo]:
        found = self._resolve_expr(index, expr)
        if found is not None and found[0] == "class":
            return found[1]
        return None

    def _bases(self, cls: ClassInfo) -> List[ClassInfo]:
        index = self.modules[cls.module]
        out = []
        for base in cls.node.bases:
            resolved = self._resolve_class(index, base)
            if resolved is not None:
                out.append(resolved)
        return out

    def _find_method(
        self, cls: ClassInfo, name: str, skip_self: bool = False
    ) -> Optional[RoutineRef]:
        """Look a method up on `cls` and then its project bases."""
        seen: set = set()
        queue = self._bases(cls) if skip_self else [cls]
        while queue:
            current = queue.pop(0)
            if id(current) in seen:
                continue
            seen.add(id(current))
            if name in current.methods:
                return current.methods[name]
            queue.extend(self._bases(current))
        return None

    def _class_of(self, routine: RoutineRef) -> Optional[ClassInfo]:
        if routine.class_name is None:
            return None
        index = self.modules.get(routine.module)
        if index is None:
            return None
        return index.classes.get(routine.class_name)

    def _local_scope(self, routine: RoutineRef) -> _LocalScope:
        """Return (and cache) the names bound inside a routine."""
        scope = self._scopes.get(routine)
        if scope is not None:
            return scope

        node = routine.node
        args = node.args  # type: ignore[attr-defined]
        params = (
            list(args.posonlyargs)
            + list(args.args)
            + list(args.kwonlyargs)
            + [a for a in (args.vararg, args.kwarg) if a is not None]
        )
        names = {a.arg for a in params}
        types: Dict[str, ast.expr] = {}
        for a in params:
            candidates = _annotation_candidates(a.annotation)
            if candidates:
                types[a.arg] = candidates[0]

        for sub in _iter_scope_nodes(node.body):  # type: ignore[attr-defined]
            if isinstance(sub, ast.Name) and isinstance(sub.ctx, ast.Store):
                names.add(sub.id)
            elif isinstance(sub, (*_DEF_TYPES, ast.ClassDef)):
                names.add(sub.name)
            if (
                isinstance(sub, ast.Assign)
                and len(sub.targets) == 1
                and isinstance(sub.targets[0], ast.Name)
                and isinstance(sub.value, ast.Call)
            ):
                types.setdefault(sub.targets[0].id, sub.value.func)
            elif isinstance(sub, ast.AnnAssign) and isinstance(
                sub.target, ast.Name
            ):
                candidates = _annotation_candidates(sub.annotation)
                if candidates:
                    types.setdefault(sub.target.id, candidates[0])

        self_name = None
        if routine.class_name is not None and "staticmethod" not in (
            _decorator_names(node)
        ):
            self_name = _first_positional(node)

        scope = _LocalScope(names=names, types=types, self_name=self_name)
        self._scopes[routine] = scope
        return scope

    def _infer_receiver(self, expr: ast.expr, caller: RoutineRef):
        """Work out what the receiver of an attribute call refers to.

        Returns:
            ``("module", ModuleIndex)``, ``("class", ClassInfo)``,
            ``("super", ClassInfo)``, ``("external", None)`` or None when
            nothing is known.
        """
        index = self.modules[caller.module]
        scope = self._local_scope(caller)
        own_class = self._class_of(caller)

        if isinstance(expr, _LITERAL_TYPES):
            return ("external", None)

        if isinstance(expr, ast.Name):
            if scope.self_name is not None and expr.id == scope.self_name:
                return ("class", own_class) if own_class else None
            if expr.id in scope.types:
                cls = self._resolve_class(index, scope.types[expr.id])
                return ("class", cls) if cls is not None else None
            if expr.id in scope.names:
                return None
            found = self._resolve_name(index, expr.id)
            if found is None or found[0] in ("module", "class", "external"):
                return found
            return None

        if isinstance(expr, ast.Attribute):
            # self.attr.method()
            if (
                isinstance(expr.value, ast.Name)
                and scope.self_name is not None
                and expr.value.id == scope.self_name
                and own_class is not None
            ):
                for cls in [own_class] + self._bases(own_class):
                    type_expr = cls.attribute_types.get(expr.attr)
                    if type_expr is None:
                        continue
                    resolved = self._resolve_class(
                        self.modules[cls.module], type_expr
                    )
                    if resolved is not None:
                        return ("class", resolved)
                return None
            head = _dotted_name(expr)
            if head is not None and head.split(".")[0] not in scope.names:
                found = self._resolve_expr(index, expr)
                if found is not None and found[0] != "function":
                    return found
            return None

        if isinstance(expr, ast.Call):
            if (
                isinstance(expr.func, ast.Name)
                and expr.func.id == "super"
                and own_class is not None
            ):
                return ("super", own_class)
            # Cls().method()
            if isinstance(expr.func, (ast.Name, ast.Attribute)):
                cls = self._resolve_class(index, expr.func)
                if cls is not None:
                    return ("class", cls)
        return None

    # ------------------------------------------------------------------
    # ProgramModel interface
    # ------------------------------------------------------------------

    def list_compilation_units(self) -> List[CompilationUnit]:
        """Return every parsed module, ordered by module name."""
        return [self.modules[m].unit for m in sorted(self.modules)]

    def unit_for(self, routine: RoutineRef) -> CompilationUnit:
        """Return the module defining `routine`."""
        return self.modules[routine.module].unit

    def routines_in(self, unit: CompilationUnit) -> List[RoutineRef]:
        """Return the routines defined in `unit`, in source order."""
        return list(self.modules[unit.module].routines)

    def get_body(self, routine: RoutineRef) -> List[ast.stmt]:
        """Return the statements of a routine's body."""
        return list(routine.node.body)  # type: ignore[attr-defined]

    def is_project_routine(self, routine: RoutineRef) -> bool:
        """Return True if `routine` belongs to the project's own code."""
        if routine.module not in self.modules:
            return False
        if not self.packages:
            return True
        return any(
            routine.module == p or routine.module.startswith(p + ".")
            for p in self.packages
        )

    def home_scope_for(self, routine: RoutineRef) -> HomeScope:
        """Return the scope owning the probes when `routine` is the entry."""
        return HomeScope(
            module=routine.module,
            class_name=routine.class_name,
            path=routine.path,
        )

    def resolve_entry_routine(
        self, type_name: Optional[str], routine_name: str
    ) -> Optional[RoutineRef]:
        """Find the configured entry routine.

        Args:
            type_name: Class name (``Cls``, ``pkg.mod.Cls`` or
                ``pkg.mod:Cls``, class names compared case-insensitively),
                a module name for a module level function, or None/empty to
                search module level functions everywhere.
            routine_name: Name of the method or function.

        Returns:
            The routine, or None if nothing matches.
        """
        if not routine_name:
            return None

        if not type_name:
            for module in sorted(self.modules):
                ref = self.modules[module].functions.get(routine_name)
                if ref is not None:
                    return ref
            return None

        if type_name in self.modules:
            ref = self.modules[type_name].functions.get(routine_name)
            if ref is not None:
                return ref

        module_part, class_part = None, type_name
        if ":" in type_name:
            module_part, class_part = type_name.split(":", 1)
        elif "." in type_name:
            module_part, class_part = type_name.rsplit(".", 1)

        for module in sorted(self.modules):
            if module_part is not None and module != module_part:
                continue
            for cls in self.modules[module].classes.values():
                if cls.name.lower() != class_part.lower():
                    continue
                ref = cls.methods.get(routine_name)
                if ref is not None:
                    return ref
        return None

    def resolve_call_target(
        self, call: ast.Call, caller: RoutineRef
    ) -> Optional[RoutineRef]:
        """Statically resolve the routine a call invokes.

        Args:
            call: The call expression.
            caller: Routine whose body contains the call.

        Returns:
            The called project routine, or None when it cannot be resolved,
            is a class instantiation, or lies outside the project.
        """
        if caller.module not in self.modules:
            return None
        index = self.modules[caller.module]
        func = call.func

        if isinstance(func, ast.Name):
            scope = self._local_scope(caller)
            if func.id in scope.names:
                return None
            found = self._resolve_name(index, func.id)
            if found is not None and found[0] == "function":
                return found[1]
            return None

        if not isinstance(func, ast.Attribute):
            return None

        receiver = self._infer_receiver(func.value, caller)
        if receiver is not None:
            kind, obj = receiver
            if kind == "module":
                return obj.functions.get(func.attr)
            if kind == "class":
                return self._find_method(obj, func.attr)
            if kind == "super":
                return self._find_method(obj, func.attr, skip_self=True)
            if kind == "external":
                return None

        if not self.ambiguous_fallback:
            return None
        # Parameters and locals of unknown type can hold anything
        head = _receiver_head(func.value)
        scope = self._local_scope(caller)
        if head is not None and head != scope.self_name:
            if head in scope.names:
                return None
        candidates = self._methods_by_name.get(func.attr, [])
        if len(candidates) != 1:
            return None
        return candidates[0]


def matches_any(routine: RoutineRef, patterns: Sequence[str]) -> bool:
    """Return True if a routine matches one of the fnmatch `patterns`.

    Patterns are tried against the bare name, the qualname and the fully
    qualified ``module.qualname``.
    """
    names = (routine.name, routine.qualname, routine.display_name)
    return any(
        fnmatch.fnmatchcase(n, pattern) for pattern in patterns for n in names
    )
