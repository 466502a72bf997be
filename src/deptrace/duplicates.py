# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Duplicate analyzer: packages installed at more than one version.

Every extra version of a package is one more copy to download, build and
ship. A DuplicateCluster groups the installed versions of one name and
scores how hard they are likely to be to converge:
- high: 3 or more versions
- medium: 2 semver-incompatible versions (different major, or different
  minor for 0.x)
- low: 2 semver-compatible versions, usually fixed by a lockfile refresh
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from deptrace.models import DependencyGraph, PackageId
from deptrace.versions import compatibility_key, version_sort_key

logger = logging.getLogger(__name__)


class DuplicateSeverity:
    """Duplicate cluster severity levels.

    Class constants (not Enum) so values serialize as plain strings.
    """

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    # Lower rank sorts first
    RANK = {HIGH: 0, MEDIUM: 1, LOW: 2}


@dataclass
class DuplicateVersion:
    """One installed version inside a duplicate cluster.

    Attributes:
        version: Installed version string.
        consumers: Sorted unique names of packages requiring exactly this version.
        transitive_count: Number of packages depending on this version,
            directly or transitively.
        dependency_count: Number of packages this version pulls in, itself included.
    """

    version: str
    consumers: List[str] = field(default_factory=list)
    transitive_count: int = 0
    dependency_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "consumers": list(self.consumers),
            "transitive_count": self.transitive_count,
            "dependency_count": self.dependency_count,
        }


@dataclass
class DuplicateCluster:
    """All installed versions of one package name (2 or more)."""

    name: str
    versions: List[DuplicateVersion] = field(default_factory=list)
    severity: str = DuplicateSeverity.LOW
    suggested_version: Optional[str] = None

    @property
    def extra_units(self) -> int:
        """Copies beyond the first one."""
        return len(self.versions) - 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "severity": self.severity,
            "extra_units": self.extra_units,
            "suggested_version": self.suggested_version,
            "suggestion": suggest_resolution(self),
            "versions": [v.to_dict() for v in self.versions],
        }


@dataclass
class DuplicateReport:
    """Duplicate clusters ordered by severity then name, plus totals."""

    clusters: List[DuplicateCluster] = field(default_factory=list)

    @property
    def stats(self) -> Dict[str, int]:
        return {
            "total_duplicates": len(self.clusters),
            "high_severity": self._count(DuplicateSeverity.HIGH),
            "medium_severity": self._count(DuplicateSeverity.MEDIUM),
            "low_severity": self._count(DuplicateSeverity.LOW),
            "extra_units": sum(c.extra_units for c in self.clusters),
        }

    def _count(self, severity: str) -> int:
        return sum(1 for c in self.clusters if c.severity == severity)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "clusters": [c.to_dict() for c in self.clusters],
            "stats": self.stats,
        }


def classify_severity(versions: List[str]) -> str:
    """Score a set of distinct installed versions of one package.

    Versions that cannot be parsed carry no compatibility information; a pair
    involving one is scored low.
    """
    if len(versions) >= 3:
        return DuplicateSeverity.HIGH

    keys = [compatibility_key(v) for v in versions]
    if any(key is None for key in keys):
        return DuplicateSeverity.LOW
    if len(set(keys)) > 1:
        return DuplicateSeverity.MEDIUM
    return DuplicateSeverity.LOW


def suggest_resolution(cluster: DuplicateCluster) -> Optional[str]:
    """One-line hint naming the consumers to move to the suggested version.

    Returns:
        Hint text, or None if nobody needs to move.
    """
    target = cluster.suggested_version
    if target is None:
        return None

    outdated: List[str] = []
    for version in cluster.versions:
        if version.version == target:
            continue
        for consumer in version.consumers:
            if consumer not in outdated:
                outdated.append(consumer)

    if not outdated:
        return None
    return f"Update {', '.join(outdated)} to use {cluster.name} {target}"


class DuplicateAnalyzer:
    """Finds duplicate clusters in a frozen DependencyGraph.

    Args:
        graph: Graph to analyze.
        latest_versions: Optional name -> latest published version. When a
            name is present, it is the suggested convergence target instead
            of the highest installed version.
    """

    def __init__(
        self,
        graph: DependencyGraph,
        latest_versions: Optional[Mapping[str, str]] = None,
    ):
        self.graph = graph
        self.latest_versions = dict(latest_versions or {})

    def analyze(self) -> DuplicateReport:
        """Build every duplicate cluster."""
        clusters: List[DuplicateCluster] = []

        for name in self.graph.names():
            nodes = self.graph.nodes_by_name(name)
            if len(nodes) < 2:
                continue
            clusters.append(self._build_cluster(name, [node.id for node in nodes]))

        clusters.sort(key=lambda c: (DuplicateSeverity.RANK[c.severity], c.name))
        report = DuplicateReport(clusters=clusters)
        logger.info(
            f"Found {len(clusters)} duplicated packages "
            f"({report.stats['extra_units']} extra units)"
        )
        return report

    def _build_cluster(self, name: str, ids: List[PackageId]) -> DuplicateCluster:
        ordered = sorted(ids, key=lambda pid: version_sort_key(pid.version))
        versions = [self._describe(pid) for pid in ordered]
        version_strings = [v.version for v in versions]

        return DuplicateCluster(
            name=name,
            versions=versions,
            severity=classify_severity(version_strings),
            suggested_version=self.latest_versions.get(name, version_strings[-1]),
        )

    def _describe(self, package_id: PackageId) -> DuplicateVersion:
        node = self.graph.get_node(package_id)
        consumers = sorted({parent.name for parent in node.requested_by}) if node else []
        return DuplicateVersion(
            version=package_id.version,
            consumers=consumers,
            transitive_count=len(self.graph.get_transitive_dependents(package_id)),
            dependency_count=len(self.graph.get_transitive_dependencies([package_id])),
        )
