"""Resource dependency graph.

Builds an execution graph from declared resources and computes traversal
levels for apply (dependencies first) and destroy (dependents first).
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable

from engine.errors import CyclicDependencyError, DanglingDependencyError, DuplicateResourceError
from resources import Resource

logger = logging.getLogger(__name__)

# Three-colour DFS marks
_WHITE, _GREY, _BLACK = 0, 1, 2


@dataclass
class GraphNode:
    """A node in the resource graph.

    Attributes:
        resource: The declared Resource
        dependencies: Nodes this node depends on (edge targets)
        dependents: Nodes depending on this node
    """
    resource: Resource
    dependencies: list['GraphNode'] = field(default_factory=list)
    dependents: list['GraphNode'] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.resource.id

    @property
    def type(self) -> str:
        return self.resource.type

    def __repr__(self) -> str:
        return f"GraphNode({self.id}, deps={[d.id for d in self.dependencies]})"


class ResourceGraph:
    """Directed acyclic graph of resources, edges dependent -> dependency.

    Provides batched traversal for lifecycle operations:
    - levels(): dependencies before dependents
    - destroy_levels(): dependents before dependencies
    """

    def __init__(self, resources: Iterable[Resource]):
        """Build the graph.

        Raises:
            DuplicateResourceError: If two resources share an ID
            DanglingDependencyError: If an edge references an unknown ID
            CyclicDependencyError: If the graph contains a cycle
        """
        self._nodes: dict[str, GraphNode] = {}
        self._build(list(resources))

    def _build(self, resources: list[Resource]) -> None:
        for resource in resources:
            if resource.id in self._nodes:
                raise DuplicateResourceError(resource.id)
            self._nodes[resource.id] = GraphNode(resource=resource)

        for node in self._nodes.values():
            for dep_id in node.resource.depends_on:
                dep = self._nodes.get(dep_id)
                if dep is None:
                    raise DanglingDependencyError(node.id, dep_id)
                node.dependencies.append(dep)
                dep.dependents.append(node)

        self._check_cycles()
        logger.debug(f"Built resource graph with {len(self._nodes)} nodes")

    def _check_cycles(self) -> None:
        """Depth-first traversal with white/grey/black marking."""
        colour = {rid: _WHITE for rid in self._nodes}

        for start in sorted(self._nodes):
            if colour[start] != _WHITE:
                continue
            # Iterative DFS; path holds the grey nodes of the current branch
            path: list[str] = [start]
            stack = [iter(sorted(d.id for d in self._nodes[start].dependencies))]
            colour[start] = _GREY
            while stack:
                dep_id = next(stack[-1], None)
                if dep_id is None:
                    colour[path.pop()] = _BLACK
                    stack.pop()
                    continue
                if colour[dep_id] == _GREY:
                    cycle = path[path.index(dep_id):] + [dep_id]
                    raise CyclicDependencyError(cycle)
                if colour[dep_id] == _WHITE:
                    colour[dep_id] = _GREY
                    path.append(dep_id)
                    stack.append(iter(sorted(d.id for d in self._nodes[dep_id].dependencies)))

    @property
    def nodes(self) -> list[GraphNode]:
        return list(self._nodes.values())

    @property
    def leaves(self) -> list[GraphNode]:
        """Nodes with no dependencies (first to apply)."""
        return [n for n in self._nodes.values() if not n.dependencies]

    @property
    def roots(self) -> list[GraphNode]:
        """Nodes nothing depends on (first to destroy)."""
        return [n for n in self._nodes.values() if not n.dependents]

    def get_node(self, resource_id: str) -> GraphNode:
        """Get a node by resource ID.

        Raises:
            KeyError: If resource ID not found
        """
        return self._nodes[resource_id]

    def __contains__(self, resource_id: object) -> bool:
        return resource_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def levels(self) -> list[list[GraphNode]]:
        """Return nodes batched into levels, dependencies first.

        Kahn's algorithm, removing every ready node at once. Every dependency
        of a node in level k lies in a level j < k, so the nodes of one level
        can run concurrently. Nodes within a level are sorted by ID.
        """
        remaining = {rid: len(n.dependencies) for rid, n in self._nodes.items()}
        ready = sorted(rid for rid, count in remaining.items() if count == 0)
        levels: list[list[GraphNode]] = []

        while ready:
            level = [self._nodes[rid] for rid in ready]
            levels.append(level)
            next_ready = []
            for node in level:
                del remaining[node.id]
                for dependent in node.dependents:
                    remaining[dependent.id] -= 1
                    if remaining[dependent.id] == 0:
                        next_ready.append(dependent.id)
            ready = sorted(next_ready)

        return levels

    def destroy_levels(self) -> list[list[GraphNode]]:
        """Return levels in destroy order (dependents before dependencies)."""
        return list(reversed(self.levels()))

    def dependents_of(self, resource_id: str) -> list[GraphNode]:
        """Return the nodes depending directly on a node."""
        return list(self._nodes[resource_id].dependents)

    def descendants_of(self, resource_id: str) -> list[GraphNode]:
        """Return every transitive dependent of a node, nearest first."""
        seen: set[str] = set()
        ordered: list[GraphNode] = []
        queue = list(self._nodes[resource_id].dependents)
        while queue:
            node = queue.pop(0)
            if node.id in seen:
                continue
            seen.add(node.id)
            ordered.append(node)
            queue.extend(node.dependents)
        return ordered
