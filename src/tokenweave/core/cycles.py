"""
Reference cycle detection.

Runs Tarjan's strongly connected components algorithm over a graph of
``node -> [referenced nodes]``. The same detector serves token alias graphs
and file dependency graphs.

Tarjan completes SCCs in reverse topological order of the condensation, so
with edges pointing from a dependant to its dependency the completion order
already lists dependencies first. No separate sort is needed.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field

from .ast.nodes import GroupNode
from .ast.query import iter_tokens

logger = logging.getLogger(__name__)


@dataclass
class CycleDetectionResult:
    """
    Outcome of a cycle scan.

    Attributes:
        has_cycles: Whether any cycle was found
        cycles: Each cycle as the list of its member nodes
        cyclic_tokens: Every node that sits on some cycle
        topological_order: Dependencies-first order of all nodes, or None when
            any cycle exists (a partial order would be wrong)
    """

    has_cycles: bool = False
    cycles: list[list[str]] = field(default_factory=list)
    cyclic_tokens: frozenset[str] = frozenset()
    topological_order: list[str] | None = None


def _all_nodes(graph: Mapping[str, Iterable[str]]) -> list[str]:
    # Targets count too, so dangling references show up as acyclic singletons
    seen: dict[str, None] = {}
    for source, targets in graph.items():
        seen.setdefault(source, None)
        for target in targets:
            seen.setdefault(target, None)
    return list(seen)


def find_cycles(graph: Mapping[str, Iterable[str]]) -> CycleDetectionResult:
    """
    Find cycles and a topological order in a directed graph.

    Args:
        graph: Adjacency map; an edge ``u -> v`` means ``u`` depends on ``v``

    Returns:
        CycleDetectionResult; ``topological_order`` lists ``v`` before ``u``
    """
    adjacency: dict[str, list[str]] = {node: list(targets) for node, targets in graph.items()}

    index_of: dict[str, int] = {}
    lowlink: dict[str, int] = {}
    stack: list[str] = []
    on_stack: set[str] = set()
    counter = 0

    cycles: list[list[str]] = []
    cyclic: set[str] = set()
    order: list[str] = []

    def enter(node: str) -> Iterator[str]:
        nonlocal counter
        index_of[node] = counter
        lowlink[node] = counter
        counter += 1
        stack.append(node)
        on_stack.add(node)
        return iter(adjacency.get(node, ()))

    def close_component(root: str) -> None:
        component: list[str] = []
        while True:
            member = stack.pop()
            on_stack.discard(member)
            component.append(member)
            if member == root:
                break
        component.reverse()

        if len(component) > 1:
            cycles.append(component)
            cyclic.update(component)
        elif root in adjacency.get(root, ()):
            cycles.append([root])
            cyclic.add(root)
        else:
            order.append(root)

    for start in _all_nodes(adjacency):
        if start in index_of:
            continue
        work: list[tuple[str, Iterator[str]]] = [(start, enter(start))]
        while work:
            node, neighbours = work[-1]
            descended = False
            for neighbour in neighbours:
                if neighbour not in index_of:
                    work.append((neighbour, enter(neighbour)))
                    descended = True
                    break
                if neighbour in on_stack:
                    lowlink[node] = min(lowlink[node], index_of[neighbour])
            if descended:
                continue

            work.pop()
            if work:
                parent = work[-1][0]
                lowlink[parent] = min(lowlink[parent], lowlink[node])
            if lowlink[node] == index_of[node]:
                close_component(node)

    has_cycles = bool(cycles)
    if has_cycles:
        logger.debug(f"Found {len(cycles)} cycle(s): {cycles}")

    return CycleDetectionResult(
        has_cycles=has_cycles,
        cycles=cycles,
        cyclic_tokens=frozenset(cyclic),
        topological_order=None if has_cycles else order,
    )


def build_reference_graph(root: GroupNode) -> dict[str, list[str]]:
    """Map each token with aliases to the alias paths it references."""
    graph: dict[str, list[str]] = {}
    for token in iter_tokens(root):
        if token.references:
            graph[token.path] = list(token.references)
    return graph


def detect_cycles(root: GroupNode) -> CycleDetectionResult:
    """Detect alias cycles in a token tree."""
    return find_cycles(build_reference_graph(root))
