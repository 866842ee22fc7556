"""A module containing generic utility functions for timetrack-cli."""

import difflib
from pathlib import Path

ascii_art = (
    r"  _____ _              _____               _",
    r" |_   _(_)_ __  ___   |_   _| _ __ _ __ | |__",
    r"   | | | | '  \/ -_)    | || '_/ _` / _|| / /",
    r"   |_| |_|_|_|_\___|    |_||_| \__,_\__||_\_\ ",
)


def create_ascii_table(headers, rows, title=None):
    """Create a formatted ASCII table.

    Args:
        headers: List of column headers
        rows: List of row data (each row is a list)
        title: Optional table title

    Returns:
        String containing the formatted table
    """
    # Calculate column widths
    col_widths = [len(str(header)) for header in headers]
    for row in rows:
        for i, cell in enumerate(row):
            col_widths[i] = max(col_widths[i], len(str(cell)))

    # Add padding
    col_widths = [w + 2 for w in col_widths]

    # Create separator line
    separator = "+" + "+".join("-" * w for w in col_widths) + "+"

    table_lines = []

    # Title
    if title:
        total_width = len(separator)
        table_lines.append("+" + "=" * (total_width - 2) + "+")
        table_lines.append(f"| {title:^{total_width - 4}} |")

    table_lines.append(separator)

    # Headers
    header_line = "|"
    for i, header in enumerate(headers):
        header_line += f" {str(header):^{col_widths[i] - 2}} |"
    table_lines.append(header_line)
    table_lines.append(separator)

    # Rows: the first column is a name, the rest are values
    for row in rows:
        row_line = "|"
        for i, cell in enumerate(row):
            cell_str = str(cell)
            if i == 0:
                row_line += f" {cell_str:<{col_widths[i] - 2}} |"
            else:
                row_line += f" {cell_str:>{col_widths[i] - 2}} |"
        table_lines.append(row_line)

    table_lines.append(separator)

    return "\n".join(table_lines)


def format_call_tree(node, seen=None, depth=0):
    """Render a call graph as an indented tree.

    Routines already shown higher up the tree are marked with ``(*)`` and
    not expanded again.

    Args:
        node: The `CallGraphNode` to render.
        seen: Routines already rendered (used by the recursion).
        depth: Depth of `node`.

    Returns:
        list[str]: One line per node.
    """
    if seen is None:
        seen = set()
    repeated = node.routine in seen
    seen.add(node.routine)

    marker = "" if depth == 0 else "|-- "
    suffix = " (*)" if repeated else ""
    indent = "    " * max(depth - 1, 0)
    lines = [f"{indent}{marker}{node.routine.qualname}{suffix}"]
    if repeated:
        return lines
    for child in node.children:
        lines.extend(format_call_tree(child, seen, depth + 1))
    return lines


def unified_diff(before: str, after: str, path: Path) -> str:
    """Return a unified diff between two versions of a file.

    Args:
        before: The original text.
        after: The new text.
        path: Path shown in the diff header.

    Returns:
        str: The diff, empty if the texts are equal.
    """
    return "".join(
        difflib.unified_diff(
            before.splitlines(keepends=True),
            after.splitlines(keepends=True),
            fromfile=f"a/{path}",
            tofile=f"b/{path}",
        )
    )
