"""Dependency graph for calculated columns with topological ordering."""

from __future__ import annotations

from collections import deque
from collections.abc import Hashable, Iterable


class CircularReferenceError(ValueError):
    """Raised when calculated columns depend on each other in a cycle."""

    def __init__(self, nodes: Iterable[Hashable]) -> None:
        self.nodes = frozenset(nodes)
        super().__init__(f"Circular reference detected involving: {set(self.nodes)}")


class DependencyGraph:
    """Tracks which calculated nodes read from which other nodes.

    Nodes are any hashable keys; the table uses column positions so that
    two columns sharing a name still get distinct nodes.
    """

    __slots__ = ("dependencies", "dependents", "calculated")

    def __init__(self) -> None:
        # node -> set of nodes it reads from
        self.dependencies: dict[Hashable, set[Hashable]] = {}
        # node -> set of nodes that read from it (reverse edges)
        self.dependents: dict[Hashable, set[Hashable]] = {}
        # nodes that need evaluating, in insertion order
        self.calculated: dict[Hashable, None] = {}

    def add_node(self, node: Hashable, dependencies: Iterable[Hashable]) -> None:
        """Register a calculated node and the nodes it reads from."""
        self.calculated[node] = None
        deps = set(dependencies)
        self.dependencies[node] = deps

        for dep in deps:
            if dep not in self.dependents:
                self.dependents[dep] = set()
            self.dependents[dep].add(node)

    def evaluation_order(self) -> tuple[list[Hashable], set[Hashable]]:
        """Return ``(order, blocked)`` using Kahn's algorithm.

        *order* lists the nodes that can be evaluated, dependencies first,
        ties broken by insertion order.  *blocked* holds the nodes on a
        cycle or downstream of one.
        """
        nodes = list(self.calculated)
        node_set = set(nodes)
        if not nodes:
            return [], set()

        # Only count deps that are themselves calculated nodes
        in_degree: dict[Hashable, int] = {
            node: len(self.dependencies.get(node, set()) & node_set) for node in nodes
        }

        queue: deque[Hashable] = deque(node for node in nodes if in_degree[node] == 0)
        order: list[Hashable] = []
        while queue:
            node = queue.popleft()
            order.append(node)
            ready = []
            for dep in self.dependents.get(node, set()):
                if dep in node_set:
                    in_degree[dep] -= 1
                    if in_degree[dep] == 0:
                        ready.append(dep)
            # Keep insertion order among nodes released together
            ready.sort(key=nodes.index)
            queue.extend(ready)

        blocked = node_set - set(order)
        return order, blocked

    def topological_order(self) -> list[Hashable]:
        """Return calculated nodes in evaluation order.

        Raises CircularReferenceError if a circular reference is detected.
        """
        order, blocked = self.evaluation_order()
        if blocked:
            raise CircularReferenceError(blocked)
        return order

    def cycles(self) -> set[Hashable]:
        """Nodes that sit on a cycle themselves (not merely downstream)."""
        _, blocked = self.evaluation_order()
        on_cycle: set[Hashable] = set()
        for node in blocked:
            if node in self._reachable(self.dependents.get(node, set())):
                on_cycle.add(node)
        return on_cycle

    def _reachable(self, start: Iterable[Hashable]) -> set[Hashable]:
        """All nodes reachable along dependent edges from *start*."""
        visited: set[Hashable] = set(start)
        queue: deque[Hashable] = deque(visited)
        while queue:
            node = queue.popleft()
            for dep in self.dependents.get(node, set()):
                if dep not in visited:
                    visited.add(dep)
                    queue.append(dep)
        return visited
