"""Builders for the statements injected into instrumented modules.

Every injected statement is built as an ``ast`` node, never parsed from
text, and rendered later together with the rebuilt routine.
"""

from __future__ import annotations

import ast
from typing import List, Optional, Sequence

from timetrack_cli.models import HomeScope, LogLine, LoopProbe, ProbeInfo
from timetrack_cli.report import header_text, line_prefix

__all__ = [
    "HOME_ALIAS",
    "STOPWATCH_MODULE",
    "STOPWATCH_CLASS",
    "StatementBuilder",
    "attr_chain",
]

# Name the home module is imported under by the other instrumented modules
HOME_ALIAS = "_timetrack_home"

STOPWATCH_MODULE = "timetrack_cli.stopwatch"
STOPWATCH_CLASS = "Stopwatch"

_REPORT_HANDLE = "_timetrack_report_file"


def attr_chain(parts: Sequence[str]) -> ast.expr:
    """Return the expression ``parts[0].parts[1]...`` as a load context."""
    if not parts:
        raise ValueError("An attribute chain needs at least one name.")
    expr: ast.expr = ast.Name(id=parts[0], ctx=ast.Load())
    for part in parts[1:]:
        expr = ast.Attribute(value=expr, attr=part, ctx=ast.Load())
    return expr


def _method_call(target: ast.expr, method: str, *args: ast.expr) -> ast.Call:
    return ast.Call(
        func=ast.Attribute(value=target, attr=method, ctx=ast.Load()),
        args=list(args),
        keywords=[],
    )


class StatementBuilder:
    """Builds probe statements as they must be written in one module.

    Attributes:
        home_scope: Scope declaring the probe fields.
        module: Dotted name of the module the statements are written in.
        alias: Name the home module is imported under in other modules.
    """

    def __init__(
        self, home_scope: HomeScope, module: str, alias: str = HOME_ALIAS
    ) -> None:
        self.home_scope = home_scope
        self.module = module
        self.alias = alias

    @property
    def needs_home_import(self) -> bool:
        """Return True when probes live in another module."""
        return self.module != self.home_scope.module

    def probe_ref(self, probe: ProbeInfo | LoopProbe) -> str:
        """Return the dotted expression reaching `probe` from this module."""
        parts = self.home_scope.reference(self.module, self.alias)
        return ".".join(parts + [probe.probe_name])

    def probe_expr(self, probe: ProbeInfo | LoopProbe) -> ast.expr:
        return attr_chain(self.probe_ref(probe).split("."))

    def start(self, probe: ProbeInfo | LoopProbe) -> ast.stmt:
        """``<probe>.start()``"""
        return ast.Expr(value=_method_call(self.probe_expr(probe), "start"))

    def stop(self, probe: ProbeInfo | LoopProbe) -> ast.stmt:
        """``<probe>.stop()``"""
        return ast.Expr(value=_method_call(self.probe_expr(probe), "stop"))

    @staticmethod
    def bind_temp(name: str, value: ast.expr) -> ast.stmt:
        """``<name> = <value>``"""
        return ast.Assign(
            targets=[ast.Name(id=name, ctx=ast.Store())],
            value=value,
        )

    @staticmethod
    def return_name(name: str) -> ast.stmt:
        """``return <name>``"""
        return ast.Return(value=ast.Name(id=name, ctx=ast.Load()))

    @staticmethod
    def field(name: str) -> ast.stmt:
        """``<name> = Stopwatch()``"""
        return ast.Assign(
            targets=[ast.Name(id=name, ctx=ast.Store())],
            value=ast.Call(
                func=ast.Name(id=STOPWATCH_CLASS, ctx=ast.Load()),
                args=[],
                keywords=[],
            ),
        )

    @staticmethod
    def stopwatch_import() -> ast.stmt:
        """``from timetrack_cli.stopwatch import Stopwatch``"""
        return ast.ImportFrom(
            module=STOPWATCH_MODULE,
            names=[ast.alias(name=STOPWATCH_CLASS)],
            level=0,
        )

    def home_import(self) -> ast.stmt:
        """``import <home module> as <alias>``"""
        return ast.Import(
            names=[ast.alias(name=self.home_scope.module, asname=self.alias)]
        )

    def report(
        self,
        entry_label: str,
        lines: Sequence[LogLine],
        variable: str,
        report_file: Optional[str] = None,
    ) -> List[ast.stmt]:
        """Build the statements emitting the timing report.

        Args:
            entry_label: Name shown in the report header.
            lines: Report lines, in order.
            variable: Local list variable collecting the lines.
            report_file: Optional path the report is appended to.

        Returns:
            The statements, to be placed at the end of the entry routine.
        """
        header = ast.Constant(value=header_text(entry_label))
        body: List[ast.stmt] = [
            ast.Assign(
                targets=[ast.Name(id=variable, ctx=ast.Store())],
                value=ast.List(elts=[header], ctx=ast.Load()),
            )
        ]
        for line in lines:
            text = ast.JoinedStr(
                values=[
                    ast.Constant(value=line_prefix(line)),
                    ast.FormattedValue(
                        value=ast.Attribute(
                            value=attr_chain(line.probe_ref.split(".")),
                            attr="elapsed_ms",
                            ctx=ast.Load(),
                        ),
                        conversion=-1,
                    ),
                    ast.Constant(value=" ms - "),
                    ast.FormattedValue(
                        value=ast.Attribute(
                            value=attr_chain(line.probe_ref.split(".")),
                            attr="elapsed",
                            ctx=ast.Load(),
                        ),
                        conversion=-1,
                    ),
                ]
            )
            body.append(
                ast.Expr(
                    value=_method_call(
                        ast.Name(id=variable, ctx=ast.Load()), "append", text
                    )
                )
            )

        joined = _method_call(
            ast.Constant(value="\n"),
            "join",
            ast.Name(id=variable, ctx=ast.Load()),
        )
        body.append(
            ast.Expr(
                value=ast.Call(
                    func=ast.Name(id="print", ctx=ast.Load()),
                    args=[joined],
                    keywords=[],
                )
            )
        )

        if report_file:
            opened = ast.Call(
                func=ast.Name(id="open", ctx=ast.Load()),
                args=[
                    ast.Constant(value=report_file),
                    ast.Constant(value="a"),
                ],
                keywords=[
                    ast.keyword(arg="encoding", value=ast.Constant("utf-8"))
                ],
            )
            write = _method_call(
                ast.Name(id=_REPORT_HANDLE, ctx=ast.Load()),
                "write",
                ast.BinOp(
                    left=_method_call(
                        ast.Constant(value="\n"),
                        "join",
                        ast.Name(id=variable, ctx=ast.Load()),
                    ),
                    op=ast.Add(),
                    right=ast.Constant(value="\n"),
                ),
            )
            body.append(
                ast.With(
                    items=[
                        ast.withitem(
                            context_expr=opened,
                            optional_vars=ast.Name(
                                id=_REPORT_HANDLE, ctx=ast.Store()
                            ),
                        )
                    ],
                    body=[ast.Expr(value=write)],
                )
            )
        return body
