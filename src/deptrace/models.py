# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Core dependency graph model.

This module defines the in-memory graph every analysis runs against:
- PackageId: (name, version) identity of an installed package
- DependencyKind: Bit flag describing how a package was declared
- PackageNode: One installed package with its forward and reverse edges
- DependencyGraph: Node table keyed by PackageId plus the ordered root set

The graph is index-based: nodes refer to each other by PackageId only, never
by object reference, so cycles and shared parents need no special handling.
A graph is built once by an ingestion adapter, frozen, and then shared
read-only by every query.
"""

import enum
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import (
    Any,
    Deque,
    Dict,
    FrozenSet,
    Iterable,
    Iterator,
    List,
    NamedTuple,
    Optional,
    Set,
    Tuple,
)

logger = logging.getLogger(__name__)


class GraphError(Exception):
    """Base class for dependency graph errors."""

    pass


class DanglingReferenceError(GraphError):
    """Raised when an edge or root references a node that is not in the graph."""

    def __init__(self, missing: "PackageId", context: str = ""):
        self.missing = missing
        self.context = context
        message = f"Dangling reference to {missing}"
        if context:
            message += f" ({context})"
        super().__init__(message)


class FrozenGraphError(GraphError):
    """Raised when a frozen (read-only) graph is mutated."""

    pass


class PackageId(NamedTuple):
    """Identity of an installed package. Unique per (name, version)."""

    name: str
    version: str

    def __str__(self) -> str:
        return f"{self.name}@{self.version}"


class DependencyKind(enum.Flag):
    """How a package is declared by the project manifest.

    TRANSITIVE is the empty flag: the package is only present because another
    installed package requires it. Re-declaring a package merges by union, so
    a package listed in both production and dev dependencies becomes BOTH.
    """

    TRANSITIVE = 0
    DIRECT = enum.auto()
    DEV = enum.auto()
    BOTH = DIRECT | DEV

    @property
    def label(self) -> str:
        """JSON-compatible name for this kind."""
        if self == DependencyKind.BOTH:
            return "both"
        if self == DependencyKind.DIRECT:
            return "direct"
        if self == DependencyKind.DEV:
            return "dev"
        return "transitive"

    @property
    def is_dev_only(self) -> bool:
        """True if declared as a dev dependency and nothing else."""
        return self == DependencyKind.DEV


@dataclass
class PackageNode:
    """A single installed package in the dependency graph.

    Edges are stored as PackageIds into the owning graph's node table:
    - children: packages this one requires (ordered, no duplicates)
    - requested_by: packages that require this one (ordered, no duplicates)
    """

    id: PackageId
    kind: DependencyKind = DependencyKind.TRANSITIVE
    flags: FrozenSet[str] = frozenset()
    deprecated: Optional[str] = None
    children: List[PackageId] = field(default_factory=list)
    requested_by: List[PackageId] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.id.name

    @property
    def version(self) -> str:
        return self.id.version

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to JSON-compatible dict."""
        result: Dict[str, Any] = {
            "name": self.name,
            "version": self.version,
            "kind": self.kind.label,
            "dependencies": [str(child) for child in self.children],
            "requested_by": [str(parent) for parent in self.requested_by],
        }
        if self.flags:
            result["flags"] = sorted(self.flags)
        if self.deprecated is not None:
            result["deprecated"] = self.deprecated
        return result


class DependencyGraph:
    """Directed graph of installed packages ("requires" edges).

    Maintains two indices for efficient queries:
    - _nodes: PackageId → PackageNode (insertion ordered)
    - _by_name: package name → PackageIds installed under that name

    Invariants (checked by validate_graph()):
    - Every edge (p, c) has c in p.children and p in c.requested_by
    - Every non-root node reachable from a root has a non-empty requested_by
    """

    def __init__(self) -> None:
        """Initialize empty dependency graph."""
        self._nodes: Dict[PackageId, PackageNode] = {}
        self._by_name: Dict[str, List[PackageId]] = {}
        self._roots: List[PackageId] = []
        self._root_set: Set[PackageId] = set()
        self._frozen = False

    # =========================================================================
    # Construction (write-once phase)
    # =========================================================================

    def add_node(
        self,
        package_id: PackageId,
        kind: DependencyKind = DependencyKind.TRANSITIVE,
        flags: Iterable[str] = (),
        deprecated: Optional[str] = None,
    ) -> PackageNode:
        """Add a node, or merge into the existing node with the same identity.

        Args:
            package_id: Identity of the package.
            kind: Declared kind; merged by union with any existing kind.
            flags: Lockfile flags (dev, optional, peer, ...); merged by union.
            deprecated: Deprecation note; the first non-empty note wins.

        Returns:
            The node stored in the graph.

        Raises:
            FrozenGraphError: If the graph has been frozen.
        """
        self._check_writable()

        node = self._nodes.get(package_id)
        if node is None:
            node = PackageNode(
                id=package_id, kind=kind, flags=frozenset(flags), deprecated=deprecated
            )
            self._nodes[package_id] = node
            self._by_name.setdefault(package_id.name, []).append(package_id)
            return node

        node.kind = node.kind | kind
        if flags:
            node.flags = node.flags | frozenset(flags)
        if node.deprecated is None and deprecated:
            node.deprecated = deprecated
        return node

    def add_edge(self, parent: PackageId, child: PackageId) -> None:
        """Add a "parent requires child" edge.

        Args:
            parent: Identity of the requiring package.
            child: Identity of the required package.

        Raises:
            DanglingReferenceError: If either endpoint is not in the graph.
            FrozenGraphError: If the graph has been frozen.
        """
        self._check_writable()

        parent_node = self._nodes.get(parent)
        if parent_node is None:
            raise DanglingReferenceError(parent, f"edge {parent} -> {child}")
        child_node = self._nodes.get(child)
        if child_node is None:
            raise DanglingReferenceError(child, f"edge {parent} -> {child}")

        if child not in parent_node.children:
            parent_node.children.append(child)
        if parent not in child_node.requested_by:
            child_node.requested_by.append(parent)

    def mark_root(self, package_id: PackageId) -> None:
        """Mark a node as a root (declared directly by the manifest).

        Raises:
            DanglingReferenceError: If the node is not in the graph.
            FrozenGraphError: If the graph has been frozen.
        """
        self._check_writable()

        if package_id not in self._nodes:
            raise DanglingReferenceError(package_id, "root")
        if package_id not in self._root_set:
            self._roots.append(package_id)
            self._root_set.add(package_id)

    def freeze(self) -> None:
        """Make the graph read-only. Called once ingestion has finished."""
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def _check_writable(self) -> None:
        if self._frozen:
            raise FrozenGraphError("Dependency graph is read-only after ingestion")

    # =========================================================================
    # Queries (read-only phase)
    # =========================================================================

    def roots(self) -> List[PackageId]:
        """Get root identities in declaration order."""
        return list(self._roots)

    def is_root(self, package_id: PackageId) -> bool:
        return package_id in self._root_set

    def get_node(self, package_id: PackageId) -> Optional[PackageNode]:
        return self._nodes.get(package_id)

    def nodes(self) -> Iterator[PackageNode]:
        """Iterate over all nodes in insertion order."""
        return iter(list(self._nodes.values()))

    def nodes_by_name(self, name: str) -> List[PackageNode]:
        """Get every installed version of a package name, in insertion order."""
        return [self._nodes[pid] for pid in self._by_name.get(name, [])]

    def names(self) -> List[str]:
        """Get all distinct package names, in insertion order."""
        return list(self._by_name.keys())

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, package_id: object) -> bool:
        return package_id in self._nodes

    def get_transitive_dependencies(self, start: Iterable[PackageId]) -> Set[PackageId]:
        """Get every node reachable from the given nodes, start nodes included.

        Breadth-first, guarded by a visited set so cycles terminate.
        """
        visited: Set[PackageId] = set()
        queue: Deque[PackageId] = deque(pid for pid in start if pid in self._nodes)

        while queue:
            current = queue.popleft()
            if current in visited:
                continue
            visited.add(current)
            for child in self._nodes[current].children:
                if child not in visited:
                    queue.append(child)

        return visited

    def get_transitive_dependents(self, package_id: PackageId) -> Set[PackageId]:
        """Get every node that depends on package_id, directly or transitively.

        The node itself is not included unless it sits on a cycle.
        """
        visited: Set[PackageId] = set()
        node = self._nodes.get(package_id)
        if node is None:
            return visited
        queue: Deque[PackageId] = deque(node.requested_by)

        while queue:
            current = queue.popleft()
            if current in visited:
                continue
            visited.add(current)
            for parent in self._nodes[current].requested_by:
                if parent not in visited:
                    queue.append(parent)

        return visited

    def validate_graph(self) -> Tuple[bool, List[str]]:
        """Validate graph structure for consistency.

        Checks for:
        - Edges pointing at unknown nodes
        - Bidirectional consistency between children and requested_by
        - Non-root nodes reachable from a root without any requester

        Returns:
            Tuple of (is_valid, error_messages).
        """
        errors: List[str] = []

        for node in self._nodes.values():
            for child in node.children:
                child_node = self._nodes.get(child)
                if child_node is None:
                    errors.append(f"Dangling edge: {node.id} -> {child}")
                elif node.id not in child_node.requested_by:
                    errors.append(f"Index inconsistency: {child} missing requester {node.id}")
            for parent in node.requested_by:
                parent_node = self._nodes.get(parent)
                if parent_node is None:
                    errors.append(f"Dangling back-reference: {node.id} <- {parent}")
                elif node.id not in parent_node.children:
                    errors.append(f"Index inconsistency: {parent} missing child {node.id}")

        for pid in self.get_transitive_dependencies(self._roots):
            if pid not in self._root_set and not self._nodes[pid].requested_by:
                errors.append(f"Reachable non-root node without requester: {pid}")

        return len(errors) == 0, errors

    def detect_corruption(self) -> bool:
        """Run validation and log any errors found.

        Returns:
            True if corruption detected, False if graph is valid.
        """
        is_valid, errors = self.validate_graph()
        if not is_valid:
            logger.error(
                f"Graph corruption detected! Found {len(errors)} consistency errors. "
                f"Errors: {errors}"
            )
            return True
        return False

    def export_to_dict(self) -> Dict[str, Any]:
        """Export graph to JSON-compatible dict.

        Returns:
            Dictionary with metadata, roots and nodes sections.
        """
        edge_count = sum(len(node.children) for node in self._nodes.values())
        return {
            "metadata": {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "total_packages": len(self._nodes),
                "total_names": len(self._by_name),
                "total_edges": edge_count,
                "total_roots": len(self._roots),
            },
            "roots": [str(pid) for pid in self._roots],
            "nodes": [node.to_dict() for node in self._nodes.values()],
        }
