# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""DependencyAnalysisService - Business logic layer for deptrace.

Coordinates one analysis invocation over a project directory:
1. Load the lockfile and build the frozen dependency graph (once)
2. Scan source files into the UsedSet (once, npm projects only)
3. Answer analyze / why / duplicates / audit / deprecated queries

Every component is built fresh per service instance and nothing is persisted
between invocations.
"""

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional

from deptrace.advisory_source import (
    AdvisorySource,
    InMemoryAdvisorySource,
    load_advisory_database,
)
from deptrace.chain_tracer import ChainTracer, Explanation
from deptrace.config import Config
from deptrace.dev_tools import DevToolClassifier
from deptrace.duplicates import DuplicateAnalyzer, DuplicateReport
from deptrace.ingestion import IngestionReport, get_adapter
from deptrace.loaders import LoadedProject, UnsupportedLockfileError, load_project
from deptrace.logging_setup import ProjectLogAdapter
from deptrace.models import DependencyGraph, DependencyKind
from deptrace.scanner import SourceScanner
from deptrace.usage_resolver import UsageResolver, UsageResult
from deptrace.vulnerability import AuditReport, DeprecatedPackage, VulnerabilityMatcher

logger = logging.getLogger(__name__)


@dataclass
class UsageAnalysis:
    """Declared dependencies split by whether the project's code imports them.

    Attributes:
        used: Declared and imported.
        unused: Declared, never imported, not a recognized dev tool.
        dev_tools: Declared, never imported, recognized build/dev tooling.
        undeclared: Imported and installed, but only as a transitive dependency.
        missing: Imported but not installed at all.
    """

    used: FrozenSet[str] = frozenset()
    unused: FrozenSet[str] = frozenset()
    dev_tools: FrozenSet[str] = frozenset()
    undeclared: FrozenSet[str] = frozenset()
    missing: FrozenSet[str] = frozenset()
    usage: Optional[UsageResult] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "used": sorted(self.used),
            "unused": sorted(self.unused),
            "dev_tools": sorted(self.dev_tools),
            "undeclared": sorted(self.undeclared),
            "missing": sorted(self.missing),
        }
        if self.usage is not None:
            result["files_scanned"] = self.usage.files_scanned
            result["files_skipped"] = self.usage.files_skipped
            result["import_count"] = self.usage.import_count
        return result


@dataclass
class DeprecationReport:
    """Deprecated installed versions plus the names whose lookup failed."""

    packages: List[DeprecatedPackage] = field(default_factory=list)
    unavailable: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "packages": [p.to_dict() for p in self.packages],
            "unavailable": list(self.unavailable),
        }


class DependencyAnalysisService:
    """Business logic coordinator for dependency analysis of one project.

    Args:
        project_root: Directory holding the lockfile and manifest.
        config: Configuration. If None, loads .deptrace.yml from project_root.
        advisory_source: Advisory backend. If None, uses the configured local
            database, or an empty source when none is configured.
        scanner: Source scanner. If None, one is built from the configuration.
    """

    def __init__(
        self,
        project_root: Path,
        config: Optional[Config] = None,
        advisory_source: Optional[AdvisorySource] = None,
        scanner: Optional[SourceScanner] = None,
    ):
        self.project_root = Path(project_root)
        self.config = config or Config.for_project(self.project_root)
        self._advisory_source = advisory_source
        self._scanner = scanner
        self._cancel_event = threading.Event()
        self.log = ProjectLogAdapter.for_project(logger, self.project_root)

        self._project: Optional[LoadedProject] = None
        self._report: Optional[IngestionReport] = None
        self._usage: Optional[UsageResult] = None

    # =========================================================================
    # Pipeline stages
    # =========================================================================

    def load_graph(self) -> IngestionReport:
        """Load the lockfile and build the frozen graph (first call only).

        Raises:
            LockfileNotFoundError, UnsupportedLockfileError, LockfileParseError:
                If the lockfile cannot be found or read.
            IngestionError: If the records cannot be turned into a graph.
        """
        if self._report is None:
            self._project = load_project(self.project_root)
            adapter = get_adapter(self._project.ecosystem, strict=self.config.strict_ingestion)
            self._report = adapter.build_graph(self._project.records, self._project.manifest)
            self.log = self.log.bind(ecosystem=self._project.ecosystem)
            self.log.info(
                f"Loaded {len(self._report.graph)} packages from {self._project.lockfile_path.name}"
            )
            if self._report.graph.detect_corruption():
                self.log.warning("Dependency graph failed validation")
        return self._report

    @property
    def graph(self) -> DependencyGraph:
        return self.load_graph().graph

    @property
    def ecosystem(self) -> str:
        return self.load_graph().ecosystem

    def scan_usage(self) -> UsageResult:
        """Scan the project's source files into a UsageResult (first call only).

        Cargo projects have no JS/TS specifiers to scan and get an empty result.

        Raises:
            AnalysisCancelledError: If cancel() was called.
        """
        if self._usage is None:
            graph = self.graph
            if self.ecosystem != "npm":
                self.log.info(f"Source scanning is not available for {self.ecosystem} projects")
                self._usage = UsageResult()
                return self._usage

            scanner = self._scanner or SourceScanner(
                self.project_root,
                source_extensions=self.config.source_extensions,
                ignore_patterns=self.config.ignore_patterns,
                max_file_size_kb=self.config.max_file_size_kb,
            )
            resolver = UsageResolver(
                installed_names=graph.names(),
                max_workers=self.config.scan_workers,
                cancel_event=self._cancel_event,
            )
            self._usage = resolver.resolve(scanner.specifier_sources())
        return self._usage

    def cancel(self) -> None:
        """Cancel running and future scans and lookups of this service."""
        self.log.info("Cancelling analysis")
        self._cancel_event.set()

    # =========================================================================
    # Queries
    # =========================================================================

    def analyze(self) -> UsageAnalysis:
        """Classify declared dependencies as used, unused or dev tools.

        Raises:
            UnsupportedLockfileError: For Cargo projects (no source scanning).
        """
        if self.ecosystem != "npm":
            raise UnsupportedLockfileError(
                f"Usage analysis needs JavaScript/TypeScript sources; "
                f"{self.ecosystem} projects support why, duplicates, audit and deprecated"
            )

        graph = self.graph
        usage = self.scan_usage()

        all_declared = {pid.name for pid in graph.roots()}
        declared = set()
        for pid in graph.roots():
            node = graph.get_node(pid)
            if node is None:
                continue
            if not self.config.include_dev and node.kind == DependencyKind.DEV:
                continue
            declared.add(pid.name)

        used = declared & usage.used
        classifier = DevToolClassifier(self.config.dev_tool_patterns)
        dev_tools, unused = classifier.classify(declared - usage.used)

        analysis = UsageAnalysis(
            used=frozenset(used),
            unused=unused,
            dev_tools=dev_tools,
            undeclared=frozenset(usage.used - all_declared),
            missing=usage.missing,
            usage=usage,
        )
        self.log.info(
            f"Usage analysis: {len(analysis.used)} used, {len(analysis.unused)} unused, "
            f"{len(analysis.dev_tools)} dev tools, {len(analysis.undeclared)} undeclared"
        )
        return analysis

    def why(self, name: str, version: Optional[str] = None) -> Explanation:
        """Explain why a package is installed.

        Raises:
            PackageNotFoundError: If the package is not installed.
        """
        tracer = ChainTracer(
            self.graph,
            max_paths=self.config.why_max_paths,
            max_expansions=self.config.why_max_expansions,
        )
        return tracer.trace(name, version)

    def duplicates(self) -> DuplicateReport:
        """Find packages installed at several versions."""
        return DuplicateAnalyzer(self.graph, self.config.latest_versions).analyze()

    def audit(self, used_only: bool = False) -> AuditReport:
        """Match installed versions against known advisories.

        Args:
            used_only: Keep only findings for packages the project's code
                imports. Cargo projects are never scanned, so nothing is kept.
        """
        report = self._matcher().audit()
        if used_only:
            report.findings = [finding for finding in report.findings if finding.used]
        self.log.info(
            f"Audit found {len(report.findings)} advisories",
            extra={"extra_fields": {"used_only": used_only, "unavailable": report.unavailable}},
        )
        return report

    def deprecated(self) -> DeprecationReport:
        """List installed versions marked deprecated."""
        matcher = self._matcher()
        packages = matcher.deprecated()
        return DeprecationReport(packages=packages, unavailable=matcher.last_unavailable)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _matcher(self) -> VulnerabilityMatcher:
        used = self.scan_usage().used if self.ecosystem == "npm" else frozenset()
        return VulnerabilityMatcher(
            self.graph,
            self.advisory_source(),
            used=used,
            max_workers=self.config.lookup_workers,
            timeout_seconds=self.config.lookup_timeout_seconds,
            cancel_event=self._cancel_event,
        )

    def advisory_source(self) -> AdvisorySource:
        """The advisory backend, loading the configured database on first use.

        Raises:
            AdvisoryDatabaseError: If the configured database cannot be loaded.
        """
        if self._advisory_source is None:
            database = self.config.advisory_database
            if database is None:
                self.log.warning("No advisory database configured, audit will find nothing")
                self._advisory_source = InMemoryAdvisorySource()
            else:
                if not database.is_absolute():
                    database = self.project_root / database
                self._advisory_source = load_advisory_database(database)
        return self._advisory_source
