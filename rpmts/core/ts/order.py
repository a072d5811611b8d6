"""Install/erase ordering of a transaction set."""

import logging
from typing import Dict, List, Tuple

from ..element import ElementList, TransactionElement
from ..flags import TransFlags
from ..graph import DependencyGraph, Edge, EdgeKind
from ..timers import OpX

logger = logging.getLogger(__name__)


class OrderMixin:
    """Mixin providing order().

    Requires:
        - self._elements, self._resolved, self._trans_flags, self.timers
        - self._resolve_in_transaction()
    """

    def _pinned_erases(self) -> Dict[int, List[TransactionElement]]:
        """Erase elements that accompany an install, keyed by id() of the install."""
        pinned: Dict[int, List[TransactionElement]] = {}
        for te in self._elements:
            if te.is_removed and te.depends_on is not None and te.depends_on in self._elements:
                pinned.setdefault(id(te.depends_on), []).append(te)
        return pinned

    def order(self) -> int:
        """Reorder elements so every element follows what it depends on.

        Installs come first, providers before the packages requiring them;
        each erase replaced by an install directly follows it; standalone
        erases come last, dependents before what they require. Requires
        loops are broken by dropping their weakest edge.

        Returns:
            0 when fully ordered, otherwise the number of elements that
            could not be placed (the current order is then kept)
        """
        if self._trans_flags & TransFlags.NOORDER:
            return 0

        with self.timers.time(OpX.ORDER):
            if not self._resolved:
                self._resolve_in_transaction()
            return self._order()

    def _order(self) -> int:
        pinned = self._pinned_erases()
        pinned_ids = {id(te) for tes in pinned.values() for te in tes}
        nodes = [te for te in self._elements if id(te) not in pinned_ids]
        index = {id(te): i for i, te in enumerate(nodes)}

        graph = DependencyGraph([te.name for te in nodes])
        for i, te in enumerate(nodes):
            for dep, provider in te.resolved:
                j = index.get(id(provider))
                if j is None:
                    continue
                kind = EdgeKind.PREREQ if dep.prereq else EdgeKind.REQUIRES
                if te.is_added:
                    # provider is installed first
                    graph.add_edge(j, i, kind, str(dep))
                else:
                    # dependent is erased first
                    graph.add_edge(i, j, kind, str(dep))

        for i, te in enumerate(nodes):
            for dep in te.conflicts:
                for j, other in enumerate(nodes):
                    if other is not te and other.type == te.type and other.satisfies(dep):
                        graph.reinforce(i, j)

        result = graph.sort()
        self._graph = graph
        self.dropped_edges: List[Tuple[TransactionElement, TransactionElement, Edge]] = [
            (nodes[e.source], nodes[e.target], e) for e in result.dropped]

        self.unordered = [nodes[i] for i in result.unordered]
        if self.unordered:
            logger.warning(f"Cannot order {len(self.unordered)} packages: "
                           f"{', '.join(te.nevra for te in self.unordered)}")
        nadded = sum(1 for te in self.unordered if te.is_added)
        if nadded:
            return nadded

        for i, te in enumerate(nodes):
            te.depth = result.depth.get(i, 0)
            te.tree = result.tree.get(i, -1)
            te.npreds = result.npreds.get(i, 0)

        installs = [i for i in result.order if nodes[i].is_added]
        connected = [i for i in installs if graph.has_edges(i)]
        isolated = [i for i in installs if not graph.has_edges(i)]

        new_order: List[TransactionElement] = []
        for i in connected:
            new_order.append(nodes[i])
            new_order.extend(self._place_pinned(nodes[i], pinned))
        self.unordered_successors = len(new_order)
        for i in isolated:
            new_order.append(nodes[i])
            new_order.extend(self._place_pinned(nodes[i], pinned))
        new_order.extend(nodes[i] for i in result.order if nodes[i].is_removed)
        # erases left in a loop run last, in admission order
        new_order.extend(nodes[i] for i in sorted(result.unordered))

        if len(new_order) != len(self._elements):
            raise RuntimeError(f"ordering lost elements: {len(new_order)} of {len(self._elements)}")

        self._elements = ElementList(new_order)
        self.ntrees = result.ntrees
        self.max_depth = result.max_depth
        for edge in result.dropped:
            logger.info(f"Ordering loop broken: {nodes[edge.source].nevra} -> "
                        f"{nodes[edge.target].nevra} ({', '.join(edge.reasons)})")
        logger.debug(f"Ordered {len(new_order)} elements in {self.ntrees} trees, "
                     f"max depth {self.max_depth}")
        return 0

    @staticmethod
    def _place_pinned(te: TransactionElement,
                      pinned: Dict[int, List[TransactionElement]]) -> List[TransactionElement]:
        erases = pinned.get(id(te), [])
        for rte in erases:
            rte.depth = te.depth + 1
            rte.tree = te.tree
            rte.npreds = 1
        return erases
