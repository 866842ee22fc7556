"""Tests for call graph resolution."""

from timetrack_cli.call_graph import (
    DEFAULT_EXCLUDES,
    CallGraphResolver,
    EntryRoutineNotFound,
    ExclusionSet,
)
from timetrack_cli.program import PythonProject


def _shape(node):
    """Return a graph as nested ``(name, [children])`` tuples."""
    return (node.routine.name, [_shape(child) for child in node.children])


class TestExclusionSet:
    """Tests for the ExclusionSet."""

    def test_defaults(self):
        """Test the default patterns."""
        assert ExclusionSet().patterns == DEFAULT_EXCLUDES

    def test_contains(self, make_project):
        """Test membership of matching and non matching routines."""
        root = make_project(
            {
                "log.py": """
                    class LogService:
                        def write(self):
                            pass

                    class Worker:
                        def write(self):
                            pass
                """
            }
        )
        model = PythonProject(root)
        log = model.resolve_entry_routine("LogService", "write")
        worker = model.resolve_entry_routine("Worker", "write")

        assert log in ExclusionSet()
        assert worker not in ExclusionSet()
        assert worker in ExclusionSet(("log.Worker.*",))

    def test_entry_not_found_is_value_error(self):
        """Test the exception hierarchy."""
        assert issubclass(EntryRoutineNotFound, ValueError)


class TestCallGraphResolver:
    """Tests for the CallGraphResolver."""

    def test_single_helper(self, analyse_project):
        """Test an entry calling one method through a local instance."""
        _, graph, registry = analyse_project(
            {
                "app.py": """
                    class Helper:
                        def work(self):
                            return 1

                    class Root:
                        def main(self):
                            helper = Helper()
                            helper.work()
                """
            },
            "Root",
            "main",
        )

        assert _shape(graph) == ("main", [("work", [])])
        assert len(registry) == 1
        assert [p.probe_name for p in registry.probes.values()] == [
            "probe1_work"
        ]

    def test_mutual_recursion(self, analyse_project):
        """Test that a cycle ends in a leaf node."""
        _, graph, registry = analyse_project(
            {
                "cycle.py": """
                    def a(n):
                        b(n - 1)

                    def b(n):
                        if n:
                            a(n)

                    def start():
                        a(3)
                """
            },
            None,
            "start",
        )

        assert _shape(graph) == ("start", [("a", [("b", [("a", [])])])])
        assert [r.name for r in registry] == ["a", "b"]
        assert [p.probe_name for p in registry.probes.values()] == [
            "probe1_a",
            "probe2_b",
        ]

    def test_self_recursion_probes_the_entry(self, analyse_project):
        """Test that recursion back into the entry gives it a probe."""
        _, graph, registry = analyse_project(
            {
                "rec.py": """
                    def fact(n):
                        if n <= 1:
                            return 1
                        return n * fact(n - 1)
                """
            },
            None,
            "fact",
        )

        assert _shape(graph) == ("fact", [("fact", [])])
        assert graph.routine in registry
        assert registry.probe_for(graph.routine).probe_name == "probe1_fact"

    def test_entry_without_recursion_has_no_probe(self, analyse_project):
        """Test that only called routines get probes."""
        _, graph, registry = analyse_project(
            {"solo.py": "def go():\n    return sum([1, 2])\n"},
            None,
            "go",
        )

        assert graph.children == []
        assert len(registry) == 0
        assert graph.routine not in registry

    def test_diamond_expands_shared_callee_once(self, analyse_project):
        """Test that a routine reached twice is expanded the first time."""
        _, graph, registry = analyse_project(
            {
                "diamond.py": """
                    def leaf():
                        pass

                    def left():
                        leaf()

                    def right():
                        leaf()
                        leaf()

                    def top():
                        left()
                        right()
                """
            },
            None,
            "top",
        )

        assert _shape(graph) == (
            "top",
            [
                ("left", [("leaf", [])]),
                ("right", [("leaf", []), ("leaf", [])]),
            ],
        )
        assert [p.probe_name for p in registry.probes.values()] == [
            "probe1_left",
            "probe2_leaf",
            "probe3_right",
        ]

    def test_one_child_per_call(self, analyse_project):
        """Test that repeated calls produce repeated children."""
        _, graph, _ = analyse_project(
            {
                "rep.py": """
                    def step():
                        pass

                    def run():
                        step()
                        step()
                """
            },
            None,
            "run",
        )

        assert _shape(graph) == ("run", [("step", []), ("step", [])])

    def test_exclusions_and_foreign_calls(self, analyse_project):
        """Test that excluded, foreign and unresolved calls are dropped."""
        _, graph, _ = analyse_project(
            {
                "svc.py": """
                    import json


                    class AppLogger:
                        def info(self, msg):
                            pass


                    class Service:
                        def __init__(self):
                            self.logger = AppLogger()

                        def load(self):
                            return {}

                        def run(self, blob):
                            self.logger.info("start")
                            data = json.loads(blob)
                            unknown_function()
                            self.load()
                            return data
                """
            },
            "Service",
            "run",
        )

        assert _shape(graph) == ("run", [("load", [])])

    def test_custom_exclusions(self, analyse_project):
        """Test that user patterns replace the defaults."""
        files = {
            "mod.py": """
                def noisy():
                    pass

                def quiet():
                    pass

                def run():
                    noisy()
                    quiet()
            """
        }
        _, graph, _ = analyse_project(files, None, "run", exclude=["noisy"])

        assert _shape(graph) == ("run", [("quiet", [])])

    def test_non_recursive(self, analyse_project):
        """Test that only the entry's direct calls are collected."""
        files = {
            "chain.py": """
                def c():
                    pass

                def b():
                    c()

                def a():
                    b()
            """
        }
        _, graph, registry = analyse_project(
            files, None, "a", recursive=False
        )

        assert _shape(graph) == ("a", [("b", [])])
        assert [r.name for r in registry] == ["b"]

    def test_resolver_is_reusable(self, make_project):
        """Test that resolve starts from a clean visited set every time."""
        root = make_project(
            {"m.py": "def g():\n    pass\n\ndef f():\n    g()\n"}
        )
        model = PythonProject(root)
        entry = model.resolve_entry_routine(None, "f")
        resolver = CallGraphResolver()

        first = resolver.resolve(entry, model)
        second = resolver.resolve(entry, model)

        assert _shape(first) == _shape(second) == ("f", [("g", [])])

    def test_graph_helpers(self, analyse_project):
        """Test walk, routines and depth of a graph."""
        _, graph, _ = analyse_project(
            {
                "m.py": """
                    def c():
                        pass

                    def b():
                        c()

                    def a():
                        b()
                        c()
                """
            },
            None,
            "a",
        )

        assert [n.routine.name for n in graph.walk()] == ["a", "b", "c", "c"]
        assert [r.name for r in graph.routines()] == ["a", "b", "c"]
        assert graph.depth() == 3
