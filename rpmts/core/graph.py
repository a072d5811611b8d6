"""Dependency graph and topological sort with cycle breaking.

Nodes are element indices (admission order), edges point from the element
that must run first to the one that depends on it. The graph is built once
per ordering pass; the sort itself never looks at packages.
"""

import heapq
import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)


class EdgeKind(IntEnum):
    REQUIRES = 0
    PREREQ = 1


@dataclass
class Edge:
    """Ordering constraint: source must be processed before target."""
    source: int
    target: int
    kind: EdgeKind = EdgeKind.REQUIRES
    reasons: List[str] = field(default_factory=list)
    reinforced: bool = False

    @property
    def breakable(self) -> bool:
        return self.kind == EdgeKind.REQUIRES


@dataclass
class SortResult:
    """Outcome of a topological sort."""
    order: List[int]
    unordered: List[int]
    dropped: List[Edge]
    depth: Dict[int, int]
    tree: Dict[int, int]
    npreds: Dict[int, int]
    ntrees: int = 0
    max_depth: int = 0

    @property
    def complete(self) -> bool:
        return not self.unordered


class DependencyGraph:
    """Directed graph of typed ordering edges between element indices."""

    def __init__(self, labels: List[str]):
        self.labels = list(labels)
        self._edges: Dict[Tuple[int, int], Edge] = {}
        self._succ: Dict[int, Set[int]] = {n: set() for n in range(len(self.labels))}
        self._pred: Dict[int, Set[int]] = {n: set() for n in range(len(self.labels))}

    def __len__(self):
        return len(self.labels)

    @property
    def edges(self) -> List[Edge]:
        return list(self._edges.values())

    def edge(self, source: int, target: int) -> Optional[Edge]:
        return self._edges.get((source, target))

    def add_edge(self, source: int, target: int, kind: EdgeKind = EdgeKind.REQUIRES,
                 reason: str = '') -> Optional[Edge]:
        """Add (or strengthen) an edge. Self loops are ignored."""
        if source == target:
            return None
        edge = self._edges.get((source, target))
        if edge is None:
            edge = Edge(source, target, kind)
            self._edges[(source, target)] = edge
            self._succ[source].add(target)
            self._pred[target].add(source)
        elif kind > edge.kind:
            edge.kind = kind
        if reason and reason not in edge.reasons:
            edge.reasons.append(reason)
        return edge

    def reinforce(self, a: int, b: int):
        """Mark edges between a and b as backed by a second relation."""
        for key in ((a, b), (b, a)):
            edge = self._edges.get(key)
            if edge is not None:
                edge.reinforced = True

    def successors(self, node: int) -> Set[int]:
        return set(self._succ[node])

    def predecessors(self, node: int) -> Set[int]:
        return set(self._pred[node])

    def has_edges(self, node: int) -> bool:
        return bool(self._succ[node] or self._pred[node])

    def weakness_key(self, edge: Edge) -> tuple:
        """Sort key for cycle breaking, smallest is dropped first."""
        return (edge.reinforced, len(edge.reasons),
                self.labels[edge.source], self.labels[edge.target],
                edge.source, edge.target)

    def sort(self) -> SortResult:
        """Topologically sort the graph, breaking Requires cycles.

        Each round orders what it can; strongly connected leftovers lose
        their weakest breakable edge and the sort is retried. When only
        unbreakable edges are left in a cycle, the remaining nodes are
        reported as unordered.
        """
        active = set(self._edges)
        dropped: List[Edge] = []

        while True:
            order, remaining = self._kahn(active)
            if not remaining:
                unordered = []
                break

            progress = False
            for scc in self._find_sccs(remaining, active):
                candidates = [self._edges[key] for key in active
                              if key[0] in scc and key[1] in scc
                              and self._edges[key].breakable]
                if not candidates:
                    continue
                weakest = min(candidates, key=self.weakness_key)
                active.discard((weakest.source, weakest.target))
                dropped.append(weakest)
                progress = True
                logger.debug(f"Breaking ordering loop: dropped "
                             f"{self.labels[weakest.source]} -> {self.labels[weakest.target]}")

            if not progress:
                unordered = sorted(remaining)
                break

        depth, npreds = self._depths(order, active)
        tree, ntrees = self._trees(order, active)
        return SortResult(
            order=order,
            unordered=unordered,
            dropped=dropped,
            depth=depth,
            tree=tree,
            npreds=npreds,
            ntrees=ntrees,
            max_depth=max(depth.values(), default=0),
        )

    def _kahn(self, active: Set[Tuple[int, int]]) -> Tuple[List[int], Set[int]]:
        """Order nodes whose predecessors are all ordered, lowest index first."""
        indegree = {n: 0 for n in range(len(self.labels))}
        for _, target in active:
            indegree[target] += 1

        queue = [n for n, count in indegree.items() if count == 0]
        heapq.heapify(queue)
        order = []
        while queue:
            node = heapq.heappop(queue)
            order.append(node)
            for succ in sorted(self._succ[node]):
                if (node, succ) not in active:
                    continue
                indegree[succ] -= 1
                if indegree[succ] == 0:
                    heapq.heappush(queue, succ)

        remaining = set(indegree) - set(order)
        return order, remaining

    def _find_sccs(self, nodes: Set[int], active: Set[Tuple[int, int]]) -> List[Set[int]]:
        """Find strongly connected components (Tarjan) with more than one node."""
        index_counter = [0]
        stack = []
        lowlinks = {}
        index = {}
        on_stack = {}
        sccs = []

        def strongconnect(node):
            index[node] = index_counter[0]
            lowlinks[node] = index_counter[0]
            index_counter[0] += 1
            stack.append(node)
            on_stack[node] = True

            for successor in sorted(self._succ[node]):
                if successor not in nodes or (node, successor) not in active:
                    continue
                if successor not in index:
                    strongconnect(successor)
                    lowlinks[node] = min(lowlinks[node], lowlinks[successor])
                elif on_stack.get(successor, False):
                    lowlinks[node] = min(lowlinks[node], index[successor])

            if lowlinks[node] == index[node]:
                scc = set()
                while True:
                    w = stack.pop()
                    on_stack[w] = False
                    scc.add(w)
                    if w == node:
                        break
                if len(scc) > 1:
                    sccs.append(scc)

        for node in sorted(nodes):
            if node not in index:
                strongconnect(node)

        sccs.sort(key=min)
        return sccs

    def _depths(self, order: List[int], active: Set[Tuple[int, int]]):
        depth = {}
        npreds = {}
        for node in order:
            preds = [p for p in self._pred[node] if (p, node) in active and p in depth]
            npreds[node] = len(preds)
            depth[node] = 1 + max((depth[p] for p in preds), default=0)
        return depth, npreds

    def _trees(self, order: List[int], active: Set[Tuple[int, int]]):
        """Label weakly connected components in order of first appearance."""
        parent = {n: n for n in order}

        def find(n):
            while parent[n] != n:
                parent[n] = parent[parent[n]]
                n = parent[n]
            return n

        for source, target in active:
            if source in parent and target in parent:
                ra, rb = find(source), find(target)
                if ra != rb:
                    parent[rb] = ra

        tree = {}
        roots = {}
        for node in order:
            root = find(node)
            if root not in roots:
                roots[root] = len(roots)
            tree[node] = roots[root]
        return tree, len(roots)
