"""
Dependency analysis over calculation steps.

References are collected structurally by walking the operand tree and
picking out ``NameRef`` operands with an explicit stack, so tree depth is
not bounded by the interpreter recursion limit. A step depends on another
step when it references that step's published ``result``; names that only
match a variable are leaves and create no edge.

Usage:
    from payroll_engines.formula.dependency import build_step_graph

    graph = build_step_graph(plan.steps)
    # {"commission": ["sales_total"], "sales_total": [], ...}
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterator, Sequence

from payroll_engines.formula.cycles import find_cycles
from payroll_engines.formula.types import (
    CalculationStep,
    NameRef,
    NestedOperation,
    Operation,
)
from payroll_kernel.exceptions import CircularDependencyError

StepGraph = dict[str, list[str]]

# Deepest operation tree a step may hold; a flat operation has depth 1.
MAX_NESTING_DEPTH = 100


def iter_references(operation: Operation) -> Iterator[str]:
    """Yield every name referenced in the operation tree, in order, with repeats."""
    stack = [iter(operation.parameters)]
    while stack:
        param = next(stack[-1], None)
        if param is None:
            stack.pop()
        elif isinstance(param, NameRef):
            yield param.name
        elif isinstance(param, NestedOperation):
            stack.append(iter(param.operation.parameters))


def iter_operations(operation: Operation) -> Iterator[Operation]:
    """Yield the operation and every nested operation, depth first."""
    stack = [operation]
    while stack:
        current = stack.pop()
        yield current
        nested = [p.operation for p in current.parameters if isinstance(p, NestedOperation)]
        stack.extend(reversed(nested))


def nesting_depth(operation: Operation) -> int:
    """Number of operation levels in the tree, counting the root."""
    deepest = 0
    stack = [(operation, 1)]
    while stack:
        current, depth = stack.pop()
        deepest = max(deepest, depth)
        stack.extend(
            (p.operation, depth + 1)
            for p in current.parameters
            if isinstance(p, NestedOperation)
        )
    return deepest


def extract_references(step: CalculationStep) -> frozenset[str]:
    """Names referenced anywhere in the step's expression, deduplicated."""
    return frozenset(iter_references(step.operation))


def ordered_references(step: CalculationStep) -> list[str]:
    """Names referenced by the step in first-seen order."""
    seen: dict[str, None] = {}
    for name in iter_references(step.operation):
        seen.setdefault(name, None)
    return list(seen)


def build_step_graph(steps: Sequence[CalculationStep]) -> StepGraph:
    """Build the step -> step dependency graph.

    Each key is a step id; its value lists the ids of the steps whose
    results it references, in first-reference order. When several steps
    publish the same result name the first one is the producer.
    """
    producers: dict[str, str] = {}
    for step in steps:
        if step.result and step.result not in producers:
            producers[step.result] = step.id

    graph: StepGraph = {}
    for step in steps:
        edges = graph.setdefault(step.id, [])
        for name in ordered_references(step):
            target = producers.get(name)
            if target is not None and target not in edges:
                edges.append(target)
    return graph


def topological_order(steps: Sequence[CalculationStep]) -> list[str]:
    """Step ids ordered so every step follows the steps it depends on.

    Ties are broken by authored order so the result is deterministic.

    Raises:
        CircularDependencyError: the graph contains a cycle.
    """
    graph = build_step_graph(steps)
    position = {step_id: index for index, step_id in enumerate(graph)}

    remaining = {step_id: len(deps) for step_id, deps in graph.items()}
    dependents: dict[str, list[str]] = {step_id: [] for step_id in graph}
    for step_id, deps in graph.items():
        for dep in deps:
            dependents[dep].append(step_id)

    ready = deque(sorted((s for s, n in remaining.items() if n == 0), key=position.__getitem__))
    order: list[str] = []
    while ready:
        current = ready.popleft()
        order.append(current)
        released = []
        for dependent in dependents[current]:
            remaining[dependent] -= 1
            if remaining[dependent] == 0:
                released.append(dependent)
        # Keep the queue in authored order
        ready = deque(sorted([*ready, *released], key=position.__getitem__))

    if len(order) != len(graph):
        raise CircularDependencyError(find_cycles(graph))
    return order


def dependency_levels(steps: Sequence[CalculationStep]) -> dict[str, int]:
    """Depth of each step: 0 for steps with no step dependencies.

    A step's level is one more than the deepest step it depends on, which
    is how a flowchart lays steps out in columns.

    Raises:
        CircularDependencyError: the graph contains a cycle.
    """
    graph = build_step_graph(steps)
    levels: dict[str, int] = {}
    for step_id in topological_order(steps):
        deps = graph[step_id]
        levels[step_id] = 1 + max(levels[d] for d in deps) if deps else 0
    return levels


def dependents_of(steps: Sequence[CalculationStep], step_id: str) -> list[str]:
    """Ids of every step that directly or transitively uses ``step_id``."""
    graph = build_step_graph(steps)
    reverse: dict[str, list[str]] = {sid: [] for sid in graph}
    for sid, deps in graph.items():
        for dep in deps:
            reverse[dep].append(sid)

    found: list[str] = []
    seen = {step_id}
    queue = deque(reverse.get(step_id, ()))
    while queue:
        current = queue.popleft()
        if current in seen:
            continue
        seen.add(current)
        found.append(current)
        queue.extend(reverse[current])
    return found


def required_steps(steps: Sequence[CalculationStep], output_variable: str) -> set[str]:
    """Ids of the steps the output's producing step needs, itself included."""
    graph = build_step_graph(steps)
    producer = next((s.id for s in steps if s.result == output_variable), None)
    if producer is None:
        return set()
    needed: set[str] = set()
    stack = [producer]
    while stack:
        current = stack.pop()
        if current in needed:
            continue
        needed.add(current)
        stack.extend(graph.get(current, ()))
    return needed
