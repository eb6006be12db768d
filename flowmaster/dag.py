"""Directed acyclic graph of operators and a depth-limited walker."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Hashable

DEFAULT_MAXIMAL_DEPTH = 100


@dataclass
class Node:
    """A vertex of the DAG with its downstream nodes."""

    id: Hashable
    outputs: list[Node] = field(default_factory=list)


@dataclass
class DAG:
    """A DAG reached from a single root."""

    root: Node | None


class DAGDepthExceededError(Exception):
    """Raised when a walk goes deeper than the walker allows."""

    def __init__(self, depth: int) -> None:
        super().__init__(f"DAG depth exceeded the limit at depth {depth}")
        self.depth = depth


class DAGWalker:
    """Visits every node of a DAG once, calling ``on_vertex`` for each."""

    def __init__(
        self,
        on_vertex: Callable[[Node], None],
        maximal_depth: int = DEFAULT_MAXIMAL_DEPTH,
    ) -> None:
        self.on_vertex = on_vertex
        self.maximal_depth = maximal_depth

    def walk(self, dag: DAG) -> None:
        """Walk depth-first from the root; errors from ``on_vertex`` propagate."""
        if dag is None:
            raise ValueError("cannot walk a missing DAG")
        visited: set[Hashable] = set()
        self._walk(dag.root, 0, visited)

    def _walk(self, node: Node | None, depth: int, visited: set[Hashable]) -> None:
        if node is None:
            raise ValueError("unexpected missing node")
        if node.id in visited:
            return
        if depth > self.maximal_depth:
            raise DAGDepthExceededError(depth)
        self.on_vertex(node)
        visited.add(node.id)
        for next_node in node.outputs:
            self._walk(next_node, depth + 1, visited)