# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Base interface for lockfile ingestion adapters.

An adapter turns already-parsed lockfile records into a DependencyGraph.
Every adapter follows the same two-pass build:
1. Create a node for every record
2. Resolve every dependency reference and wire the edges

Forward references therefore never matter, whatever order the lockfile lists
its packages in. Ecosystem-specific behavior (reference resolution, root
selection) lives in the subclasses.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import (
    Any,
    Dict,
    FrozenSet,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from deptrace.models import DependencyGraph, DependencyKind, PackageId

logger = logging.getLogger(__name__)


class IngestionError(Exception):
    """Base class for errors raised while building the graph from records."""

    pass


class AmbiguousDependencyError(IngestionError):
    """Raised when a bare dependency name matches several installed versions."""

    def __init__(self, name: str, versions: Sequence[str], requested_by: Optional[str] = None):
        self.name = name
        self.versions = list(versions)
        self.requested_by = requested_by
        where = f" (required by {requested_by})" if requested_by else ""
        super().__init__(
            f"Ambiguous dependency '{name}'{where}: installed versions "
            f"{', '.join(self.versions)}"
        )


class MalformedRecordError(IngestionError):
    """Raised when a lockfile record is missing a required field."""

    def __init__(self, message: str, record: Optional[Mapping[str, Any]] = None):
        self.record = record
        super().__init__(message)


class UnresolvedDependencyError(IngestionError):
    """Raised when a required dependency reference matches no installed package."""

    def __init__(self, reference: str, requested_by: str):
        self.reference = reference
        self.requested_by = requested_by
        super().__init__(f"Dependency '{reference}' of {requested_by} is not in the lockfile")


@dataclass
class LockfileRecord:
    """One installed package as supplied by the lockfile parser.

    dependencies must all resolve; optional_dependencies (optional and peer
    requirements) may legitimately be absent from the install.
    """

    name: str
    version: str
    dependencies: List[str] = field(default_factory=list)
    optional_dependencies: List[str] = field(default_factory=list)
    flags: FrozenSet[str] = frozenset()
    source: Optional[str] = None  # Cargo registry/git source; None for workspace members
    path: Optional[str] = None  # npm install location, e.g. node_modules/a/node_modules/b
    deprecated: Optional[str] = None

    @property
    def package_id(self) -> PackageId:
        return PackageId(self.name, self.version)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LockfileRecord":
        """Build a record from a parsed mapping.

        Raises:
            MalformedRecordError: If name or version is missing or not a string.
        """
        name = data.get("name")
        version = data.get("version")
        if not isinstance(name, str) or not name:
            raise MalformedRecordError(f"Record is missing 'name': {dict(data)}", data)
        if not isinstance(version, str) or not version:
            raise MalformedRecordError(
                f"Record for '{name}' is missing 'version': {dict(data)}", data
            )
        return cls(
            name=name,
            version=version,
            dependencies=list(data.get("dependencies") or []),
            optional_dependencies=list(data.get("optional_dependencies") or []),
            flags=frozenset(data.get("flags") or ()),
            source=data.get("source"),
            path=data.get("path"),
            deprecated=data.get("deprecated"),
        )


@dataclass
class ManifestInfo:
    """Direct dependency declarations from the project manifest."""

    dependencies: List[str] = field(default_factory=list)
    dev_dependencies: List[str] = field(default_factory=list)
    members: List[str] = field(default_factory=list)  # Cargo workspace member crates

    def kind_of(self, name: str) -> DependencyKind:
        """Declared kind of a direct dependency name."""
        kind = DependencyKind.TRANSITIVE
        if name in self.dependencies:
            kind |= DependencyKind.DIRECT
        if name in self.dev_dependencies:
            kind |= DependencyKind.DEV
        return kind


@dataclass
class IngestionReport:
    """Outcome of building a graph from lockfile records."""

    graph: DependencyGraph
    ecosystem: str
    record_count: int = 0
    skipped_records: int = 0
    skipped_messages: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ecosystem": self.ecosystem,
            "record_count": self.record_count,
            "package_count": len(self.graph),
            "root_count": len(self.graph.roots()),
            "skipped_records": self.skipped_records,
            "skipped_messages": list(self.skipped_messages),
        }


RecordLike = Union[LockfileRecord, Mapping[str, Any]]


class LockfileAdapter(ABC):
    """Abstract base class for lockfile ingestion adapters.

    Subclasses supply reference resolution and root selection; the base class
    owns record validation and the two-pass build.

    Args:
        strict: If True (default), a malformed record aborts ingestion. If
            False, malformed records are skipped and counted in the report.
    """

    def __init__(self, strict: bool = True):
        self.strict = strict

    @abstractmethod
    def ecosystem(self) -> str:
        """Return ecosystem name ("npm", "cargo")."""
        pass

    @abstractmethod
    def _resolve_reference(
        self,
        record: LockfileRecord,
        reference: str,
        index: "RecordIndex",
    ) -> Optional[PackageId]:
        """Resolve one dependency reference of a record.

        Returns:
            Identity of the referenced package, or None if nothing matches.

        Raises:
            AmbiguousDependencyError: If several installed versions match and
                the reference carries nothing to disambiguate them.
        """
        pass

    @abstractmethod
    def _select_roots(
        self,
        manifest: ManifestInfo,
        index: "RecordIndex",
    ) -> List[Tuple[PackageId, DependencyKind]]:
        """Select root nodes.

        Returns:
            List of (PackageId, DependencyKind) pairs in declaration order.
        """
        pass

    def build_graph(
        self,
        records: Iterable[RecordLike],
        manifest: Optional[ManifestInfo] = None,
    ) -> IngestionReport:
        """Build and freeze a DependencyGraph from lockfile records.

        Args:
            records: Parsed lockfile records.
            manifest: Direct dependency declarations. Defaults to empty.

        Returns:
            IngestionReport holding the frozen graph and skip counts.

        Raises:
            MalformedRecordError: Strict mode only, for a record missing a field.
            AmbiguousDependencyError: For an ambiguous bare reference.
            UnresolvedDependencyError: For a required reference with no match.
        """
        manifest = manifest or ManifestInfo()
        graph = DependencyGraph()
        report = IngestionReport(graph=graph, ecosystem=self.ecosystem())

        valid = self._validate_records(records, report)
        index = RecordIndex(valid)

        # Pass 1: nodes
        for record in valid:
            graph.add_node(record.package_id, flags=record.flags, deprecated=record.deprecated)

        # Pass 2: edges
        for record in valid:
            for reference in record.dependencies:
                target = self._resolve_reference(record, reference, index)
                if target is None:
                    raise UnresolvedDependencyError(reference, str(record.package_id))
                graph.add_edge(record.package_id, target)
            for reference in record.optional_dependencies:
                target = self._resolve_reference(record, reference, index)
                if target is None:
                    logger.debug(
                        f"Optional dependency '{reference}' of {record.package_id} "
                        f"is not installed, skipping"
                    )
                    continue
                graph.add_edge(record.package_id, target)

        for package_id, kind in self._select_roots(manifest, index):
            graph.add_node(package_id, kind=kind)
            graph.mark_root(package_id)

        graph.freeze()

        logger.info(
            f"Ingested {report.record_count} {self.ecosystem()} records into "
            f"{len(graph)} packages ({len(graph.roots())} roots, "
            f"{report.skipped_records} skipped)"
        )
        return report

    def _validate_records(
        self, records: Iterable[RecordLike], report: IngestionReport
    ) -> List[LockfileRecord]:
        valid: List[LockfileRecord] = []
        for raw in records:
            report.record_count += 1
            try:
                record = raw if isinstance(raw, LockfileRecord) else LockfileRecord.from_dict(raw)
                if not record.name or not record.version:
                    raise MalformedRecordError(
                        f"Record is missing name or version: {record!r}"
                    )
            except MalformedRecordError as e:
                if self.strict:
                    raise
                logger.warning(f"Skipping malformed lockfile record: {e}")
                report.skipped_records += 1
                report.skipped_messages.append(str(e))
                continue
            valid.append(record)
        return valid


class RecordIndex:
    """Lookup tables over validated records, shared by the resolution pass."""

    def __init__(self, records: Sequence[LockfileRecord]):
        self.records = list(records)
        self._versions_by_name: Dict[str, List[str]] = {}
        self._by_path: Dict[str, PackageId] = {}

        for record in self.records:
            versions = self._versions_by_name.setdefault(record.name, [])
            if record.version not in versions:
                versions.append(record.version)
            if record.path:
                self._by_path[record.path] = record.package_id

    def versions_of(self, name: str) -> List[str]:
        """Distinct installed versions of a name, in record order."""
        return list(self._versions_by_name.get(name, []))

    def has(self, name: str, version: str) -> bool:
        return version in self._versions_by_name.get(name, [])

    def at_path(self, path: str) -> Optional[PackageId]:
        return self._by_path.get(path)

    def unique(self, name: str, requested_by: Optional[str] = None) -> Optional[PackageId]:
        """Resolve a bare name to its only installed version.

        Raises:
            AmbiguousDependencyError: If more than one version is installed.
        """
        versions = self._versions_by_name.get(name, [])
        if not versions:
            return None
        if len(versions) > 1:
            raise AmbiguousDependencyError(name, versions, requested_by)
        return PackageId(name, versions[0])
