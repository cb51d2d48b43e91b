"""Worklist graph kernels on compressed sparse row graphs: BFS, SSSP and PageRank."""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator, Sequence

UNREACHED = -1
DEFAULT_WEIGHT_MAX = sys.maxsize

_log = logging.getLogger(__name__)


class CsrGraph:
    """A directed graph in compressed sparse row form.

    ``node_array[v]`` to ``node_array[v + 1]`` index the out-edges of ``v``
    in ``edge_array``; ``edge_values`` optionally holds one weight per edge.
    """

    def __init__(
        self,
        node_array: Sequence[int],
        edge_array: Sequence[int],
        edge_values: Sequence[int] | None = None,
    ) -> None:
        self.node_array = list(node_array)
        self.edge_array = list(edge_array)
        self.edge_values = None if edge_values is None else list(edge_values)
        if not self.node_array:
            raise ValueError("node_array must hold at least one offset")
        if any(b < a for a, b in zip(self.node_array, self.node_array[1:])):
            raise ValueError("node_array offsets must not decrease")
        if self.node_array[0] < 0 or self.node_array[-1] > len(self.edge_array):
            raise ValueError("node_array offsets exceed edge_array")
        if self.edge_values is not None and len(self.edge_values) != len(self.edge_array):
            raise ValueError("edge_values must have one entry per edge")
        n = self.num_nodes()
        if any(not 0 <= w < n for w in self.edge_array):
            raise ValueError("edge target out of range")

    def num_nodes(self) -> int:
        return len(self.node_array) - 1

    def out_degree(self, v: int) -> int:
        return self.node_array[v + 1] - self.node_array[v]

    def neighbours(self, v: int) -> list[int]:
        return self.edge_array[self.node_array[v]:self.node_array[v + 1]]

    def weighted_edges(self, v: int) -> Iterator[tuple[int, int]]:
        if self.edge_values is None:
            raise ValueError("graph has no edge weights")
        start, stop = self.node_array[v], self.node_array[v + 1]
        return zip(self.edge_array[start:stop], self.edge_values[start:stop])


def _seed_range(graph: CsrGraph, start_seed: int, seeds: int) -> range:
    if start_seed < 0 or seeds < 0 or start_seed + seeds > graph.num_nodes():
        raise ValueError(
            f"seeds {start_seed}..{start_seed + seeds - 1} outside "
            f"{graph.num_nodes()} nodes"
        )
    return range(start_seed, start_seed + seeds)


def bfs(graph: CsrGraph, start_seed: int = 0, seeds: int = 1) -> list[int]:
    """Hop counts from the seed nodes; unreached nodes hold UNREACHED."""
    dist = [UNREACHED] * graph.num_nodes()
    frontier = list(_seed_range(graph, start_seed, seeds))
    for seed in frontier:
        dist[seed] = 0

    hop = 1
    while frontier:
        _log.debug("-- epoch %d %d --> push", hop, len(frontier))
        next_frontier = []
        for node in frontier:
            for target in graph.neighbours(node):
                if dist[target] == UNREACHED:
                    dist[target] = hop
                    next_frontier.append(target)
        frontier = next_frontier
        hop += 1
    return dist


def sssp(
    graph: CsrGraph,
    start_seed: int = 0,
    seeds: int = 1,
    weight_max: int = DEFAULT_WEIGHT_MAX,
) -> list[int]:
    """Shortest weighted distances from the seeds; unreached nodes hold ``weight_max``."""
    if graph.edge_values is None:
        raise ValueError("sssp needs a graph with edge weights")
    dist = [weight_max] * graph.num_nodes()
    frontier = list(_seed_range(graph, start_seed, seeds))
    for seed in frontier:
        dist[seed] = 0

    hop = 1
    while frontier:
        _log.debug("-- epoch %d %d", hop, len(frontier))
        next_frontier = []
        for node in frontier:
            for target, weight in graph.weighted_edges(node):
                candidate = dist[node] + weight
                if candidate < dist[target]:
                    dist[target] = candidate
                    next_frontier.append(target)
        frontier = next_frontier
        hop += 1
    return dist


def pagerank(graph: CsrGraph, alpha: float = 0.85, epsilon: float = 0.01) -> list[float]:
    """Push-style PageRank; residuals below ``epsilon`` are not propagated."""
    n = graph.num_nodes()
    rank = [1 - alpha] * n
    residual = [0.0] * n
    pending = [0.0] * n

    for v in range(n):
        degree = graph.out_degree(v)
        for target in graph.neighbours(v):
            residual[target] += 1.0 / degree
    residual = [(1 - alpha) * alpha * r for r in residual]
    frontier = list(range(n))

    hop = 1
    while frontier:
        _log.debug("-- epoch %d %d", hop, len(frontier))
        next_frontier = []
        for v in frontier:
            rank[v] += residual[v]
            degree = graph.out_degree(v)
            if degree:
                share = residual[v] * alpha / degree
                for target in graph.neighbours(v):
                    old = pending[target]
                    pending[target] = old + share
                    if pending[target] >= epsilon and old < epsilon:
                        next_frontier.append(target)
            residual[v] = 0.0
        frontier = next_frontier
        hop += 1
        residual, pending = pending, residual
    return rank