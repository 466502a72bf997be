# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Chain tracer: explains why a package is installed.

Finds the dependency chains from roots to every installed version of a
package. The search runs backwards: it starts at the target node(s) and
follows requested_by references until it reaches a root.

A branch ends at the first root it reaches, unless that root is declared only
as a dev dependency. Then the branch also continues through it, so a dev root
that production packages require still shows its production chains.

Paths come out shortest first, because partial paths are expanded breadth
first. Among paths of equal length the order is the order in which they
were discovered, which only depends on the graph's insertion order.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Tuple

from deptrace.models import DependencyGraph, PackageId

logger = logging.getLogger(__name__)


class PackageNotFoundError(Exception):
    """Raised when the queried package is not installed."""

    def __init__(self, name: str, version: Optional[str] = None):
        self.name = name
        self.version = version
        target = f"{name}@{version}" if version else name
        super().__init__(f"Package '{target}' is not in the dependency graph")


@dataclass
class DependencyPath:
    """One chain from a root to the target, root first."""

    packages: List[PackageId]
    dev_only: bool = False

    @property
    def root(self) -> PackageId:
        return self.packages[0]

    def __len__(self) -> int:
        return len(self.packages)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "packages": [{"name": p.name, "version": p.version} for p in self.packages],
            "dev_only": self.dev_only,
        }


@dataclass
class Explanation:
    """Answer to "why is this package installed?".

    Attributes:
        name: Queried package name.
        version: Queried version, or None for every installed version.
        matches: Installed versions that matched the query.
        paths: Root-to-target chains, shortest first.
        dev_only: True if no production root reaches any matched version.
        truncated: True if a search bound stopped the traversal early.
    """

    name: str
    version: Optional[str] = None
    matches: List[PackageId] = field(default_factory=list)
    paths: List[DependencyPath] = field(default_factory=list)
    dev_only: bool = False
    truncated: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "matches": [str(pid) for pid in self.matches],
            "paths": [path.to_dict() for path in self.paths],
            "dev_only": self.dev_only,
            "truncated": self.truncated,
        }


class ChainTracer:
    """Traces root-to-package chains over a frozen DependencyGraph.

    Args:
        graph: Graph to query.
        max_paths: Stop after this many paths.
        max_expansions: Stop after following this many requested_by references.
    """

    DEFAULT_MAX_PATHS = 50
    DEFAULT_MAX_EXPANSIONS = 100_000

    def __init__(
        self,
        graph: DependencyGraph,
        max_paths: int = DEFAULT_MAX_PATHS,
        max_expansions: int = DEFAULT_MAX_EXPANSIONS,
    ):
        self.graph = graph
        self.max_paths = max_paths
        self.max_expansions = max_expansions

    def trace(self, name: str, version: Optional[str] = None) -> Explanation:
        """Find every simple path from a root to the named package.

        Args:
            name: Package name.
            version: Restrict to this installed version.

        Returns:
            Explanation with the paths found.

        Raises:
            PackageNotFoundError: If no installed package matches.
        """
        targets = [
            node.id
            for node in self.graph.nodes_by_name(name)
            if version is None or node.version == version
        ]
        if not targets:
            raise PackageNotFoundError(name, version)

        explanation = Explanation(name=name, version=version, matches=targets)
        paths: List[Tuple[PackageId, ...]] = []

        # Partial paths are stored target first and reversed when emitted
        queue: Deque[Tuple[PackageId, ...]] = deque()
        for target in targets:
            if self.graph.is_root(target):
                if len(paths) >= self.max_paths:
                    explanation.truncated = True
                    continue
                paths.append((target,))
                if not self._is_dev_root(target):
                    continue
            queue.append((target,))

        expansions = 0
        while queue and not explanation.truncated:
            partial = queue.popleft()
            head = self.graph.get_node(partial[-1])
            if head is None:
                continue

            for parent in head.requested_by:
                expansions += 1
                if expansions > self.max_expansions:
                    logger.warning(
                        f"Stopped tracing {name} after {self.max_expansions} expansions"
                    )
                    explanation.truncated = True
                    break
                if parent in partial:
                    continue  # cycle

                extended = partial + (parent,)
                if self.graph.is_root(parent):
                    if len(paths) >= self.max_paths:
                        explanation.truncated = True
                        break
                    paths.append(extended)
                    if not self._is_dev_root(parent):
                        continue
                queue.append(extended)

        for found in paths:
            chain = list(reversed(found))
            root = self.graph.get_node(chain[0])
            dev_only = root is not None and root.kind.is_dev_only
            explanation.paths.append(DependencyPath(packages=chain, dev_only=dev_only))

        # Every root-to-target chain is dev-only exactly when no production
        # root reaches the target, whichever root a printed chain starts at
        production = self.graph.get_transitive_dependencies(
            root for root in self.graph.roots() if not self._is_dev_root(root)
        )
        explanation.dev_only = bool(explanation.paths) and not any(
            target in production for target in targets
        )
        if not explanation.paths:
            logger.info(f"{name} is installed but not reachable from any root")
        return explanation

    def _is_dev_root(self, package_id: PackageId) -> bool:
        node = self.graph.get_node(package_id)
        return node is not None and node.kind.is_dev_only
