# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Tests for the vulnerability matcher.

Covers range matching, severity ordering and grouping, degraded lookups
(failures and timeouts), deprecation reporting and cancellation.
"""

import threading
from typing import List, Optional

import pytest

from deptrace.advisory_source import (
    AdvisoryRecord,
    AdvisorySource,
    AdvisoryUnavailableError,
    InMemoryAdvisorySource,
)
from deptrace.ingestion import ManifestInfo, NpmLockfileAdapter
from deptrace.usage_resolver import AnalysisCancelledError
from deptrace.vulnerability import AuditReport, Finding, Severity, VulnerabilityMatcher


@pytest.fixture
def audit_graph():
    records = [
        {"name": "minimist", "version": "1.2.5", "path": "node_modules/minimist"},
        {"name": "lodash", "version": "4.17.20", "path": "node_modules/lodash"},
        {"name": "qs", "version": "6.5.2", "path": "node_modules/qs",
         "deprecated": "qs 6.5.2 is unsupported"},
        {"name": "js-tokens", "version": "4.0.0", "path": "node_modules/js-tokens"},
        {"name": "js-tokens", "version": "3.0.2",
         "path": "node_modules/qs/node_modules/js-tokens"},
    ]
    manifest = ManifestInfo(dependencies=["minimist", "lodash", "qs", "js-tokens"])
    return NpmLockfileAdapter().build_graph(records, manifest).graph


class FailingSource(AdvisorySource):
    """Advisory source that fails for selected package names."""

    def __init__(self, failing: List[str], inner: Optional[AdvisorySource] = None):
        self.failing = set(failing)
        self.inner = inner or InMemoryAdvisorySource()

    def advisories(self, package_name):
        if package_name in self.failing:
            raise AdvisoryUnavailableError(package_name, "connection refused")
        return self.inner.advisories(package_name)

    def deprecation(self, package_name, version):
        if package_name in self.failing:
            raise AdvisoryUnavailableError(package_name, "connection refused")
        return self.inner.deprecation(package_name, version)


class BlockingSource(AdvisorySource):
    """Advisory source whose lookups for one name hang until released."""

    def __init__(self, blocked: str):
        self.blocked = blocked
        self.release = threading.Event()

    def advisories(self, package_name):
        if package_name == self.blocked:
            self.release.wait(5)
        return []

    def deprecation(self, package_name, version):
        return None


class TestSeverity:
    """Tests for Severity normalization."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("CRITICAL", Severity.CRITICAL),
            ("moderate", Severity.MEDIUM),
            ("info", Severity.INFORMATIONAL),
            ("  low ", Severity.LOW),
            ("bogus", Severity.UNKNOWN),
            ("", Severity.UNKNOWN),
        ],
    )
    def test_normalize(self, raw, expected):
        assert Severity.normalize(raw) == expected


class TestAudit:
    """Tests for VulnerabilityMatcher.audit()."""

    def test_matches_installed_versions_in_range(self, audit_graph):
        source = InMemoryAdvisorySource(
            [
                AdvisoryRecord("GHSA-min", "minimist", "<1.2.6", "critical", "pollution", "1.2.6"),
                AdvisoryRecord("GHSA-old", "lodash", "<4.17.12", "high"),
                AdvisoryRecord("GHSA-tok", "js-tokens", "<4.0.0", "low"),
            ]
        )

        report = VulnerabilityMatcher(audit_graph, source, used=["minimist"]).audit()

        assert [(f.advisory_id, f.installed_version) for f in report.findings] == [
            ("GHSA-min", "1.2.5"),
            ("GHSA-tok", "3.0.2"),
        ]
        minimist = report.findings[0]
        assert minimist.severity == Severity.CRITICAL
        assert minimist.used is True
        assert minimist.fix_version == "1.2.6"
        assert report.findings[1].used is False
        assert report.unavailable == []

    def test_patched_version_is_not_reported(self):
        records = [{"name": "minimist", "version": "1.2.6", "path": "node_modules/minimist"}]
        graph = NpmLockfileAdapter().build_graph(
            records, ManifestInfo(dependencies=["minimist"])
        ).graph
        source = InMemoryAdvisorySource(
            [AdvisoryRecord("GHSA-min", "minimist", "<1.2.6", "critical")]
        )

        report = VulnerabilityMatcher(graph, source, used=["minimist"]).audit()

        assert report.findings == []
        assert report.unavailable == []

    def test_findings_ordered_by_severity_then_id(self, audit_graph):
        source = InMemoryAdvisorySource(
            [
                AdvisoryRecord("B", "lodash", "*", "moderate"),
                AdvisoryRecord("A", "qs", "*", "medium"),
                AdvisoryRecord("C", "minimist", "*", "high"),
            ]
        )

        report = VulnerabilityMatcher(audit_graph, source).audit()

        assert [(f.severity, f.advisory_id) for f in report.findings] == [
            (Severity.HIGH, "C"),
            (Severity.MEDIUM, "A"),
            (Severity.MEDIUM, "B"),
        ]
        assert list(report.grouped()) == [Severity.HIGH, Severity.MEDIUM]
        assert report.counts() == {Severity.HIGH: 1, Severity.MEDIUM: 2}

    def test_invalid_range_is_skipped(self, audit_graph):
        source = InMemoryAdvisorySource(
            [
                AdvisoryRecord("BROKEN", "minimist", "not-a-range", "high"),
                AdvisoryRecord("OK", "minimist", "<=1.2.5", "low"),
            ]
        )

        report = VulnerabilityMatcher(audit_graph, source).audit()

        assert [f.advisory_id for f in report.findings] == ["OK"]

    def test_failed_lookup_degrades_to_unknown(self, audit_graph):
        source = FailingSource(
            ["js-tokens"],
            InMemoryAdvisorySource([AdvisoryRecord("GHSA-min", "minimist", "<1.2.6", "high")]),
        )

        report = VulnerabilityMatcher(audit_graph, source).audit()

        assert report.unavailable == ["js-tokens"]
        unknown = [f for f in report.findings if f.severity == Severity.UNKNOWN]
        assert sorted(f.installed_version for f in unknown) == ["3.0.2", "4.0.0"]
        assert unknown[0].advisory_id == "unavailable:js-tokens"
        assert "connection refused" in unknown[0].summary
        assert report.findings[0].advisory_id == "GHSA-min"

    def test_timed_out_lookup_degrades_to_unknown(self, audit_graph):
        source = BlockingSource("lodash")
        matcher = VulnerabilityMatcher(audit_graph, source, timeout_seconds=0.2)

        try:
            report = matcher.audit()
        finally:
            source.release.set()

        assert report.unavailable == ["lodash"]
        assert [f.advisory_id for f in report.findings] == ["unavailable:lodash"]
        assert "timed out" in report.findings[0].summary

    def test_hung_lookup_does_not_starve_queued_lookups(self):
        """With a single worker slot, a hung lookup is abandoned at its deadline."""
        records = [
            {"name": "aaa", "version": "1.0.0", "path": "node_modules/aaa"},
            {"name": "bbb", "version": "1.0.0", "path": "node_modules/bbb"},
        ]
        graph = NpmLockfileAdapter().build_graph(
            records, ManifestInfo(dependencies=["aaa", "bbb"])
        ).graph

        class HangingSource(AdvisorySource):
            def __init__(self):
                self.release = threading.Event()

            def advisories(self, package_name):
                if package_name == "aaa":
                    self.release.wait(5)
                    return []
                return [AdvisoryRecord("GHSA-b", "bbb", "<2.0.0", "high")]

            def deprecation(self, package_name, version):
                return None

        source = HangingSource()
        matcher = VulnerabilityMatcher(graph, source, max_workers=1, timeout_seconds=0.3)

        try:
            report = matcher.audit()
        finally:
            source.release.set()

        assert report.unavailable == ["aaa"]
        assert [f.advisory_id for f in report.findings] == ["GHSA-b", "unavailable:aaa"]

    def test_cancelled_audit_raises(self, audit_graph):
        event = threading.Event()
        event.set()

        with pytest.raises(AnalysisCancelledError):
            VulnerabilityMatcher(
                audit_graph, InMemoryAdvisorySource(), cancel_event=event
            ).audit()

    def test_report_to_dict(self):
        finding = Finding("X-1", "a", "1.0.0", Severity.LOW, used=True)
        report = AuditReport(findings=[finding], unavailable=["b"])

        result = report.to_dict()

        assert result["findings"][0]["package"] == "a"
        assert result["by_severity"] == {"low": [finding.to_dict()]}
        assert result["counts"] == {"low": 1}
        assert result["unavailable"] == ["b"]


class TestDeprecated:
    """Tests for VulnerabilityMatcher.deprecated()."""

    def test_lockfile_notes_and_source_notes(self, audit_graph):
        source = InMemoryAdvisorySource(
            deprecations={"js-tokens": {"3.0.2": "upgrade to 4"}, "lodash": {"4.17.21": "x"}}
        )

        packages = VulnerabilityMatcher(audit_graph, source, used=["qs"]).deprecated()

        assert [(p.name, p.version, p.used, p.note) for p in packages] == [
            ("js-tokens", "3.0.2", False, "upgrade to 4"),
            ("qs", "6.5.2", True, "qs 6.5.2 is unsupported"),
        ]

    def test_failed_lookup_is_recorded(self, audit_graph):
        matcher = VulnerabilityMatcher(audit_graph, FailingSource(["lodash"]))

        packages = matcher.deprecated()

        assert [p.name for p in packages] == ["qs"]
        assert matcher.last_unavailable == ["lodash"]

    def test_to_dict(self, audit_graph):
        packages = VulnerabilityMatcher(audit_graph, InMemoryAdvisorySource()).deprecated()

        assert packages[0].to_dict() == {
            "name": "qs",
            "version": "6.5.2",
            "used": False,
            "note": "qs 6.5.2 is unsupported",
        }
