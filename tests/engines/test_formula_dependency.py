"""
Tests for dependency analysis and cycle detection.

Covers:
- Reference extraction through nested operations, at any depth
- Step graph construction
- Topological order with authored-order tie breaking
- Dependency levels, dependents, required steps
- Cycle detection: mutual, self, longer, disconnected groups
"""

import pytest

from payroll_engines.formula.cycles import cyclic_nodes, find_cycles, has_cycle
from payroll_engines.formula.dependency import (
    build_step_graph,
    dependency_levels,
    dependents_of,
    extract_references,
    iter_operations,
    iter_references,
    nesting_depth,
    ordered_references,
    required_steps,
    topological_order,
)
from payroll_engines.formula.types import CalculationStep, op
from payroll_kernel.exceptions import CircularDependencyError


def step(step_id, operation, result=None):
    return CalculationStep(step_id, step_id.title(), operation, result=result)


class TestReferenceExtraction:
    """Names are collected structurally from the operand tree."""

    def test_flat(self):
        s = step("s", op("add", "a", "b", 3))
        assert extract_references(s) == frozenset({"a", "b"})

    def test_nested(self):
        s = step("s", op("subtract", op("add", "a", "b"), op("multiply", "c", "d")))
        assert extract_references(s) == frozenset({"a", "b", "c", "d"})

    def test_literals_are_not_references(self):
        s = step("s", op("multiply", 2, "3.5"))
        assert extract_references(s) == frozenset()

    def test_ordered_references_deduplicates_in_first_seen_order(self):
        s = step("s", op("add", "b", op("multiply", "a", "b"), "c"))
        assert ordered_references(s) == ["b", "a", "c"]

    def test_references_keep_left_to_right_order_with_repeats(self):
        operation = op("add", op("multiply", "a", op("max", "b", "c")), "d", op("min", "a", "e"))
        assert list(iter_references(operation)) == ["a", "b", "c", "d", "a", "e"]

    def test_operations_are_yielded_depth_first(self):
        operation = op("add", op("multiply", "a", op("max", "b")), op("min", "c"))
        assert [o.type.value for o in iter_operations(operation)] == [
            "add",
            "multiply",
            "max",
            "min",
        ]

    def test_nesting_depth(self):
        assert nesting_depth(op("add", "a", 1)) == 1
        assert nesting_depth(op("add", op("abs", op("round", "a")), op("abs", "b"))) == 3

    def test_deep_tree_does_not_recurse(self):
        operation = op("add", "x", 1)
        for i in range(1199):
            operation = op("add", operation, f"v{i}")

        references = list(iter_references(operation))

        assert nesting_depth(operation) == 1200
        assert len(references) == 1200
        assert references[0] == "x"
        assert references[-1] == "v1198"
        assert sum(1 for _ in iter_operations(operation)) == 1200


class TestStepGraph:
    """Edges follow published result names."""

    def test_edges_follow_results(self):
        steps = [
            step("s1", op("add", "x", 1), result="r1"),
            step("s2", op("multiply", "r1", 2), result="r2"),
        ]
        assert build_step_graph(steps) == {"s1": [], "s2": ["s1"]}

    def test_variables_create_no_edges(self):
        steps = [step("s1", op("add", "x", "y"), result="r1")]
        assert build_step_graph(steps) == {"s1": []}

    def test_repeated_reference_is_one_edge(self):
        steps = [
            step("s1", op("add", "x", 1), result="r1"),
            step("s2", op("add", "r1", "r1"), result="r2"),
        ]
        assert build_step_graph(steps)["s2"] == ["s1"]


class TestTopologicalOrder:
    """Dependencies first, authored order for ties."""

    def test_dependencies_come_first(self):
        steps = [
            step("total", op("add", "a", "b"), result="total"),
            step("a_step", op("add", "x", 1), result="a"),
            step("b_step", op("add", "x", 2), result="b"),
        ]
        assert topological_order(steps) == ["a_step", "b_step", "total"]

    def test_independent_steps_keep_authored_order(self):
        steps = [
            step("c", op("add", "x", 1), result="rc"),
            step("a", op("add", "x", 1), result="ra"),
            step("b", op("add", "x", 1), result="rb"),
        ]
        assert topological_order(steps) == ["c", "a", "b"]

    def test_chain(self):
        steps = [
            step("s3", op("add", "r2", 1), result="r3"),
            step("s2", op("add", "r1", 1), result="r2"),
            step("s1", op("add", "x", 1), result="r1"),
        ]
        assert topological_order(steps) == ["s1", "s2", "s3"]

    def test_cycle_raises(self):
        steps = [
            step("a", op("add", "rb", 1), result="ra"),
            step("b", op("add", "ra", 1), result="rb"),
        ]
        with pytest.raises(CircularDependencyError) as exc_info:
            topological_order(steps)

        assert exc_info.value.cycles == [["a", "b", "a"]]
        assert exc_info.value.code == "CIRCULAR_DEPENDENCY"


class TestDependencyQueries:
    """Levels, dependents and the output's closure."""

    def _steps(self):
        return [
            step("s1", op("add", "x", 1), result="r1"),
            step("s2", op("multiply", "r1", 2), result="r2"),
            step("s3", op("add", "r1", "r2"), result="r3"),
            step("side", op("add", "x", 100), result="unused"),
        ]

    def test_levels(self):
        assert dependency_levels(self._steps()) == {"s1": 0, "s2": 1, "s3": 2, "side": 0}

    def test_dependents(self):
        assert sorted(dependents_of(self._steps(), "s1")) == ["s2", "s3"]
        assert dependents_of(self._steps(), "s3") == []

    def test_required_steps(self):
        assert required_steps(self._steps(), "r3") == {"s1", "s2", "s3"}

    def test_required_steps_unknown_output(self):
        assert required_steps(self._steps(), "nothing") == set()


class TestCycleDetection:
    """find_cycles reports closed paths."""

    def test_no_references_no_cycles(self):
        assert find_cycles({"a": [], "b": [], "c": []}) == []
        assert not has_cycle({"a": []})

    def test_mutual_reference_is_one_cycle_with_both(self):
        cycles = find_cycles({"a": ["b"], "b": ["a"]})

        assert len(cycles) == 1
        assert set(cycles[0]) == {"a", "b"}

    def test_self_reference_is_one_step_cycle(self):
        assert find_cycles({"a": ["a"]}) == [["a", "a"]]

    def test_three_step_cycle(self):
        assert find_cycles({"a": ["b"], "b": ["c"], "c": ["a"]}) == [["a", "b", "c", "a"]]

    def test_disconnected_groups(self):
        graph = {"a": ["b"], "b": ["a"], "c": ["d"], "d": ["c"], "e": []}
        cycles = find_cycles(graph)

        assert len(cycles) == 2
        assert {frozenset(c) for c in cycles} == {frozenset({"a", "b"}), frozenset({"c", "d"})}

    def test_unknown_targets_are_ignored(self):
        assert find_cycles({"a": ["missing"]}) == []

    def test_long_chain_does_not_recurse(self):
        size = 5000
        graph = {f"s{i}": [f"s{i + 1}"] for i in range(size)}
        graph[f"s{size}"] = ["s0"]

        cycles = find_cycles(graph)

        assert len(cycles) == 1
        assert len(cycles[0]) == size + 2

    def test_cyclic_nodes_finds_members_dfs_skips(self):
        # a -> b -> a is reported; c sits on a -> c -> b -> a
        graph = {"a": ["b", "c"], "b": ["a"], "c": ["b"]}

        assert cyclic_nodes(graph) == {"a", "b", "c"}

    def test_cyclic_nodes_excludes_feeders(self):
        graph = {"a": ["b"], "b": ["a"], "x": ["a"]}
        assert cyclic_nodes(graph) == {"a", "b"}
