"""Adjacency index and traversal algorithms over a workflow graph.

All traversals are iterative so large graphs cannot exhaust the call stack.
"""

import heapq
from collections import deque
from typing import Dict, Iterable, List, Optional, Set, Tuple

from ..models.core import CircularDependency, WorkflowConnection, WorkflowDefinition

WHITE, GRAY, BLACK = 0, 1, 2


class GraphIndex:
    """Successor/predecessor lists keyed by node id, in insertion order.

    Edges whose endpoints are not in the node set are ignored; dangling
    references are reported by validation, not by traversal.
    """

    def __init__(self, node_ids: Iterable[str], edges: Iterable[Tuple[str, str]] = ()):
        self.node_ids: List[str] = list(node_ids)
        self.position: Dict[str, int] = {node_id: i for i, node_id in enumerate(self.node_ids)}
        self.successors: Dict[str, List[str]] = {node_id: [] for node_id in self.node_ids}
        self.predecessors: Dict[str, List[str]] = {node_id: [] for node_id in self.node_ids}
        for source, target in edges:
            self.add_edge(source, target)

    @classmethod
    def from_definition(
        cls,
        definition: WorkflowDefinition,
        connections: Optional[Iterable[WorkflowConnection]] = None
    ) -> "GraphIndex":
        """Index a definition, optionally over a subset of its connections."""
        if connections is None:
            connections = definition.connections
        return cls(
            definition.node_ids(),
            ((c.source_node_id, c.target_node_id) for c in connections)
        )

    def add_edge(self, source: str, target: str) -> bool:
        """Add an edge. Returns False when an endpoint is unknown."""
        if source not in self.position or target not in self.position:
            return False
        self.successors[source].append(target)
        self.predecessors[target].append(source)
        return True

    def has_path(self, start: str, goal: str) -> bool:
        """Whether ``goal`` is reachable from ``start`` along existing edges."""
        if start not in self.position or goal not in self.position:
            return False
        if start == goal:
            return True

        visited: Set[str] = {start}
        stack = [start]
        while stack:
            node = stack.pop()
            for child in self.successors[node]:
                if child == goal:
                    return True
                if child not in visited:
                    visited.add(child)
                    stack.append(child)
        return False

    def reachable_from(self, sources: Iterable[str]) -> Set[str]:
        """All nodes reachable from any of ``sources``, sources included."""
        seen: Set[str] = set()
        queue = deque(source for source in sources if source in self.position)
        seen.update(queue)
        while queue:
            node = queue.popleft()
            for child in self.successors[node]:
                if child not in seen:
                    seen.add(child)
                    queue.append(child)
        return seen

    def find_cycles(self) -> List[CircularDependency]:
        """Find cycles with colour-marking DFS.

        Every back edge found yields one cycle whose ``path`` starts and ends
        on the node the back edge points to. Roots are visited in insertion
        order so results are deterministic.
        """
        colour = {node_id: WHITE for node_id in self.node_ids}
        cycles: List[CircularDependency] = []
        seen_cycles: Set[Tuple[str, ...]] = set()

        for root in self.node_ids:
            if colour[root] != WHITE:
                continue

            colour[root] = GRAY
            path = [root]
            stack = [(root, iter(self.successors[root]))]
            while stack:
                node, children = stack[-1]
                descended = False
                # resume this node's children where the last descent stopped
                for child in children:
                    if colour[child] == WHITE:
                        colour[child] = GRAY
                        path.append(child)
                        stack.append((child, iter(self.successors[child])))
                        descended = True
                        break
                    # back edge: child is still on the current path
                    if colour[child] == GRAY:
                        members = path[path.index(child):]
                        key = tuple(members)
                        if key not in seen_cycles:
                            seen_cycles.add(key)
                            cycles.append(CircularDependency(nodes=list(members), path=members + [child]))
                # all children done
                if not descended:
                    colour[node] = BLACK
                    stack.pop()
                    path.pop()

        return cycles

    def has_cycle(self) -> bool:
        return bool(self.find_cycles())

    def _kahn(self) -> Tuple[List[str], Dict[str, int]]:
        indegree = {node_id: len(self.predecessors[node_id]) for node_id in self.node_ids}
        wave = {node_id: 0 for node_id in self.node_ids}

        # min-heap on insertion position breaks ties between ready nodes
        ready = [(self.position[n], n) for n in self.node_ids if indegree[n] == 0]
        heapq.heapify(ready)

        order: List[str] = []
        while ready:
            _, node = heapq.heappop(ready)
            order.append(node)
            for child in self.successors[node]:
                # depth of the deepest predecessor, plus one
                wave[child] = max(wave[child], wave[node] + 1)
                indegree[child] -= 1
                if indegree[child] == 0:
                    heapq.heappush(ready, (self.position[child], child))

        return order, {node_id: wave[node_id] for node_id in order}

    def topological_order(self) -> List[str]:
        """Kahn's algorithm with ties broken by insertion order.

        Nodes stuck on a cycle are appended at the end in insertion order so
        the result always lists every node once.
        """
        order, _ = self._kahn()
        if len(order) < len(self.node_ids):
            placed = set(order)
            order.extend(n for n in self.node_ids if n not in placed)
        return order

    def waves(self) -> List[List[str]]:
        """Group acyclic nodes by dependency depth.

        A node's wave is one more than the deepest of its predecessors.
        Nodes on a cycle belong to no wave.
        """
        order, depth = self._kahn()
        grouped: List[List[str]] = []
        for node_id in order:
            level = depth[node_id]
            while len(grouped) <= level:
                grouped.append([])
            grouped[level].append(node_id)
        # stable output within a wave
        for group in grouped:
            group.sort(key=self.position.__getitem__)
        return grouped
