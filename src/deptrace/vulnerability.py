# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Vulnerability matcher.

Matches installed package versions against advisories from an
AdvisorySource, and reports deprecated installed versions.

Lookups are issued once per package name, with a bound on how many run at
once. A lookup that fails or times out never aborts the audit: every
installed version of that package gets a single finding of severity
"unknown" instead.
"""

import concurrent.futures
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Tuple, TypeVar

from deptrace.advisory_source import AdvisoryRecord, AdvisorySource
from deptrace.models import DependencyGraph, PackageNode
from deptrace.usage_resolver import AnalysisCancelledError
from deptrace.versions import VersionRange, VersionRangeError, version_sort_key

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Severity:
    """Finding severity levels, most severe first.

    Class constants (not Enum) so values serialize as plain strings.
    """

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFORMATIONAL = "informational"
    UNKNOWN = "unknown"

    ORDER = [CRITICAL, HIGH, MEDIUM, LOW, INFORMATIONAL, UNKNOWN]
    RANK = {level: rank for rank, level in enumerate(ORDER)}
    ALIASES = {"moderate": MEDIUM, "info": INFORMATIONAL, "none": INFORMATIONAL}

    @classmethod
    def normalize(cls, severity: str) -> str:
        value = (severity or "").strip().lower()
        value = cls.ALIASES.get(value, value)
        return value if value in cls.RANK else cls.UNKNOWN


@dataclass
class Finding:
    """An installed package version inside an advisory's affected range.

    Attributes:
        advisory_id: Advisory identifier ("unavailable:<name>" when the lookup failed).
        package_name: Installed package name.
        installed_version: Installed version.
        severity: Normalized severity (see Severity).
        used: True if the package is imported by the project's own code.
        fix_version: First fixed version, if known.
        summary: Advisory summary, or the lookup failure reason.
    """

    advisory_id: str
    package_name: str
    installed_version: str
    severity: str
    used: bool = False
    fix_version: Optional[str] = None
    summary: str = ""

    def sort_key(self) -> Tuple[Any, ...]:
        return (
            Severity.RANK[self.severity],
            self.advisory_id,
            self.package_name,
            version_sort_key(self.installed_version),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "advisory_id": self.advisory_id,
            "package": self.package_name,
            "installed_version": self.installed_version,
            "severity": self.severity,
            "used": self.used,
            "fix_version": self.fix_version,
            "summary": self.summary,
        }


@dataclass
class AuditReport:
    """Findings in report order plus the packages whose lookup failed."""

    findings: List[Finding] = field(default_factory=list)
    unavailable: List[str] = field(default_factory=list)

    def grouped(self) -> Dict[str, List[Finding]]:
        """Findings grouped by severity, most severe group first."""
        groups: Dict[str, List[Finding]] = {}
        for level in Severity.ORDER:
            matching = [f for f in self.findings if f.severity == level]
            if matching:
                groups[level] = matching
        return groups

    def counts(self) -> Dict[str, int]:
        return {level: len(items) for level, items in self.grouped().items()}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "findings": [f.to_dict() for f in self.findings],
            "by_severity": {
                level: [f.to_dict() for f in items] for level, items in self.grouped().items()
            },
            "counts": self.counts(),
            "unavailable": list(self.unavailable),
        }


@dataclass
class DeprecatedPackage:
    """An installed version marked deprecated by its publisher."""

    name: str
    version: str
    used: bool
    note: str

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "version": self.version, "used": self.used, "note": self.note}


class VulnerabilityMatcher:
    """Audits a frozen DependencyGraph against an AdvisorySource.

    Args:
        graph: Graph whose installed packages are audited.
        source: Advisory backend.
        used: UsedSet; decides Finding.used.
        max_workers: Upper bound on concurrent lookups.
        timeout_seconds: Time allowed for each lookup, from when it starts.
        cancel_event: Event checked between packages; set it to cancel.
    """

    DEFAULT_MAX_WORKERS = 4
    DEFAULT_TIMEOUT_SECONDS = 10.0
    POLL_SECONDS = 0.1  # cancellation check interval

    def __init__(
        self,
        graph: DependencyGraph,
        source: AdvisorySource,
        used: Iterable[str] = (),
        max_workers: int = DEFAULT_MAX_WORKERS,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.graph = graph
        self.source = source
        self.used = frozenset(used)
        self.max_workers = max(1, max_workers)
        self.timeout_seconds = timeout_seconds
        self.cancel_event = cancel_event or threading.Event()
        self._ranges: Dict[str, Optional[VersionRange]] = {}
        self.last_unavailable: List[str] = []

    def audit(self) -> AuditReport:
        """Match every installed package against its advisories.

        Raises:
            AnalysisCancelledError: If cancellation was requested.
        """
        names = sorted(self.graph.names())
        results, failures = self._lookup_each(names, self.source.advisories)

        report = AuditReport(unavailable=sorted(failures))
        for name in names:
            nodes = self.graph.nodes_by_name(name)
            if name in failures:
                report.findings.extend(self._unknown_findings(nodes, failures[name]))
                continue
            for advisory in results.get(name, []):
                report.findings.extend(self._match(advisory, nodes))

        report.findings.sort(key=Finding.sort_key)
        logger.info(
            f"Audited {len(names)} packages: {len(report.findings)} findings, "
            f"{len(report.unavailable)} lookups unavailable"
        )
        return report

    def deprecated(self) -> List[DeprecatedPackage]:
        """List installed versions that are deprecated.

        Only the exact installed version is checked. Names whose lookup failed
        are logged and recorded in last_unavailable.

        Raises:
            AnalysisCancelledError: If cancellation was requested.
        """
        notes: Dict[Tuple[str, str], str] = {}
        to_query: List[str] = []
        for name in sorted(self.graph.names()):
            for node in self.graph.nodes_by_name(name):
                if node.deprecated:
                    notes[(node.name, node.version)] = node.deprecated
                elif name not in to_query:
                    to_query.append(name)

        def lookup(name: str) -> Dict[str, Optional[str]]:
            return {
                node.version: self.source.deprecation(name, node.version)
                for node in self.graph.nodes_by_name(name)
                if not node.deprecated
            }

        results, failures = self._lookup_each(to_query, lookup)
        for name, reason in sorted(failures.items()):
            logger.warning(f"Deprecation lookup failed for {name}: {reason}")
        self.last_unavailable = sorted(failures)

        for name, by_version in results.items():
            for version, note in by_version.items():
                if note:
                    notes[(name, version)] = note

        packages = [
            DeprecatedPackage(name=name, version=version, used=name in self.used, note=note)
            for (name, version), note in notes.items()
        ]
        packages.sort(key=lambda p: (p.name, version_sort_key(p.version)))
        return packages

    def _lookup_each(
        self, names: List[str], lookup: Callable[[str], T]
    ) -> Tuple[Dict[str, T], Dict[str, str]]:
        """Run lookup(name) for every name, at most max_workers at a time.

        Each lookup gets its own deadline, counted from the moment it starts.
        A lookup past its deadline is abandoned: its slot goes to the next
        queued name, so one hung lookup never delays or fails the others.
        Abandoned lookups keep running on daemon threads and do not hold up
        interpreter exit; their late results are discarded.

        Returns:
            Tuple of (results by name, failure reason by name).
        """
        results: Dict[str, T] = {}
        failures: Dict[str, str] = {}
        pending: Deque[str] = deque(names)
        running: Dict["concurrent.futures.Future[T]", Tuple[str, float]] = {}

        while pending or running:
            if self.cancel_event.is_set():
                raise AnalysisCancelledError("Advisory lookups cancelled")

            while pending and len(running) < self.max_workers:
                name = pending.popleft()
                running[self._start(lookup, name)] = (
                    name,
                    time.monotonic() + self.timeout_seconds,
                )

            next_deadline = min(deadline for _, deadline in running.values())
            wait_for = min(max(0.0, next_deadline - time.monotonic()), self.POLL_SECONDS)
            done, _ = concurrent.futures.wait(
                list(running), timeout=wait_for, return_when=concurrent.futures.FIRST_COMPLETED
            )

            for future in done:
                name, _ = running.pop(future)
                try:
                    results[name] = future.result()
                except AnalysisCancelledError:
                    raise
                except Exception as e:
                    logger.warning(f"Advisory lookup for {name} failed: {e}")
                    failures[name] = str(e) or type(e).__name__

            now = time.monotonic()
            for future, (name, deadline) in list(running.items()):
                if deadline <= now and not future.done():
                    del running[future]
                    logger.warning(
                        f"Advisory lookup for {name} timed out after {self.timeout_seconds}s"
                    )
                    failures[name] = f"lookup timed out after {self.timeout_seconds}s"

        return results, failures

    def _start(self, lookup: Callable[[str], T], name: str) -> "concurrent.futures.Future[T]":
        """Start one lookup on a daemon thread and return its future."""
        future: "concurrent.futures.Future[T]" = concurrent.futures.Future()

        def run() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(self._guarded(lookup, name))
            except Exception as e:
                future.set_exception(e)

        threading.Thread(target=run, name=f"deptrace-lookup-{name}", daemon=True).start()
        return future

    def _guarded(self, lookup: Callable[[str], T], name: str) -> T:
        if self.cancel_event.is_set():
            raise AnalysisCancelledError(f"Advisory lookups cancelled before {name}")
        return lookup(name)

    def _range(self, advisory: AdvisoryRecord) -> Optional[VersionRange]:
        if advisory.affected_range not in self._ranges:
            try:
                self._ranges[advisory.affected_range] = VersionRange(advisory.affected_range)
            except VersionRangeError as e:
                logger.warning(f"Skipping advisory {advisory.id}: {e}")
                self._ranges[advisory.affected_range] = None
        return self._ranges[advisory.affected_range]

    def _match(self, advisory: AdvisoryRecord, nodes: List[PackageNode]) -> List[Finding]:
        affected = self._range(advisory)
        if affected is None:
            return []
        return [
            Finding(
                advisory_id=advisory.id,
                package_name=node.name,
                installed_version=node.version,
                severity=Severity.normalize(advisory.severity),
                used=node.name in self.used,
                fix_version=advisory.fixed_version,
                summary=advisory.summary,
            )
            for node in nodes
            if affected.contains(node.version)
        ]

    def _unknown_findings(self, nodes: List[PackageNode], reason: str) -> List[Finding]:
        return [
            Finding(
                advisory_id=f"unavailable:{node.name}",
                package_name=node.name,
                installed_version=node.version,
                severity=Severity.UNKNOWN,
                used=node.name in self.used,
                summary=f"Advisory lookup failed: {reason}",
            )
            for node in nodes
        ]
