"""
Cycle detection over the step dependency graph.

``find_cycles`` is a depth-first search with an on-path marker, started from
every node so that circular groups unreachable from the plan output are
still caught. A back-edge to a node on the current path yields a cycle: the
path slice from that node's first occurrence, closed by repeating it.

    a -> b -> a        reported as ["a", "b", "a"]
    a -> a             reported as ["a", "a"]

The search is iterative, so a long chain of steps cannot exhaust the
interpreter's recursion limit. Each node is entered once, so the search
always terminates.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

_EXHAUSTED = object()


def find_cycles(graph: Mapping[str, Sequence[str]]) -> list[list[str]]:
    """Return the cycles found by DFS, in discovery order.

    Edges to ids that are not keys of ``graph`` are ignored.
    """
    cycles: list[list[str]] = []
    visited: set[str] = set()

    for start in graph:
        if start in visited:
            continue

        path: list[str] = [start]
        on_path: dict[str, int] = {start: 0}
        stack = [(start, iter(graph[start]))]
        visited.add(start)

        while stack:
            node, edges = stack[-1]
            target = next(edges, _EXHAUSTED)
            if target is _EXHAUSTED:
                stack.pop()
                path.pop()
                del on_path[node]
                continue
            if target not in graph:
                continue
            if target in on_path:
                cycles.append(path[on_path[target]:] + [target])
            elif target not in visited:
                visited.add(target)
                on_path[target] = len(path)
                path.append(target)
                stack.append((target, iter(graph[target])))

    return cycles


def cyclic_nodes(graph: Mapping[str, Sequence[str]]) -> set[str]:
    """Every node that can reach itself, whether or not DFS reported it.

    DFS back-edges find at least one cycle per circular group but not every
    member of it; this closes that gap for error reporting.
    """
    result: set[str] = set()
    for node in graph:
        seen: set[str] = set()
        stack = [t for t in graph[node] if t in graph]
        while stack:
            current = stack.pop()
            if current == node:
                result.add(node)
                break
            if current in seen:
                continue
            seen.add(current)
            stack.extend(t for t in graph[current] if t in graph)
    return result


def has_cycle(graph: Mapping[str, Sequence[str]]) -> bool:
    return bool(find_cycles(graph))
