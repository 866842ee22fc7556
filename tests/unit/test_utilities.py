"""Unit tests for utility functions."""

from pathlib import Path

from timetrack_cli.utilities import (
    ascii_art,
    create_ascii_table,
    format_call_tree,
    unified_diff,
)


class TestCreateAsciiTable:
    """Tests for create_ascii_table."""

    def test_basic(self):
        """Test basic ASCII table creation."""
        headers = ["Name", "Age", "City"]
        rows = [
            ["Alice", "25", "New York"],
            ["Bob", "30", "London"],
        ]

        table = create_ascii_table(headers, rows)

        assert isinstance(table, str)
        for text in ("Name", "Age", "City", "Alice", "Bob", "London"):
            assert text in table

    def test_with_title(self):
        """Test ASCII table creation with title."""
        table = create_ascii_table(
            ["Item", "Count"], [["Apples", 5]], "Fruit Inventory"
        )

        lines = table.splitlines()
        assert lines[0].startswith("+=")
        assert "Fruit Inventory" in lines[1]

    def test_empty_rows(self):
        """Test ASCII table creation with empty rows."""
        table = create_ascii_table(["Name", "Value"], [])

        assert table.splitlines() == [
            "+------+-------+",
            "| Name | Value |",
            "+------+-------+",
            "+------+-------+",
        ]

    def test_alignment(self):
        """Test that names are left and values right aligned."""
        table = create_ascii_table(["Routine", "ms"], [["load", 7]])

        assert "| load    |  7 |" in table

    def test_all_lines_same_width(self):
        """Test that the table is rectangular."""
        table = create_ascii_table(
            ["A", "B"], [["long value", 1], ["x", 12345]], title="T"
        )

        assert len({len(line) for line in table.splitlines()}) == 1


class TestFormatCallTree:
    """Tests for format_call_tree."""

    def test_service_tree(self, analyse_project, service_project):
        """Test the tree of the service project."""
        _, graph, _ = analyse_project(service_project, "OrderService", "run")

        assert format_call_tree(graph) == [
            "OrderService.run",
            "|-- Repository.load",
            "|-- OrderService.handle",
            "    |-- Repository.save",
            "|-- normalise",
        ]

    def test_repeated_routines_are_marked(self, analyse_project):
        """Test that repeats are not expanded again."""
        _, graph, _ = analyse_project(
            {
                "m.py": """
                    def leaf():
                        pass

                    def mid():
                        leaf()

                    def top():
                        mid()
                        mid()
                """
            },
            None,
            "top",
        )

        lines = format_call_tree(graph)

        assert lines[0] == "top"
        assert lines[1:3] == ["|-- mid", "    |-- leaf"]
        assert lines[3:] == ["|-- mid (*)"]


class TestUnifiedDiff:
    """Tests for unified_diff."""

    def test_diff_headers(self):
        """Test the file names and changed lines."""
        diff = unified_diff("a = 1\n", "a = 2\n", Path("pkg/mod.py"))

        assert diff.startswith("--- a/pkg/mod.py\n+++ b/pkg/mod.py\n")
        assert "-a = 1\n" in diff
        assert "+a = 2\n" in diff

    def test_no_changes(self):
        """Test that equal texts give an empty diff."""
        assert unified_diff("x\n", "x\n", Path("m.py")) == ""


def test_ascii_art():
    """Test the banner lines."""
    assert len(ascii_art) == 4
    assert all(isinstance(line, str) for line in ascii_art)
