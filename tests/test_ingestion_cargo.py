# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Tests for the Cargo ingestion adapter.

Cargo.lock writes "name", "name version" or "name version (source)" entries;
a bare name is only valid while a single version is installed.
"""

import pytest

from deptrace.ingestion import (
    AmbiguousDependencyError,
    CargoLockfileAdapter,
    MalformedRecordError,
    ManifestInfo,
    UnresolvedDependencyError,
)
from deptrace.ingestion.cargo import parse_reference
from deptrace.models import DependencyKind, PackageId

REGISTRY = "registry+https://github.com/rust-lang/crates.io-index"


class TestParseReference:
    """Tests for parse_reference()."""

    def test_bare_name(self):
        assert parse_reference("serde") == ("serde", None, None)

    def test_name_and_version(self):
        assert parse_reference("windows-sys 0.48.0") == ("windows-sys", "0.48.0", None)

    def test_name_version_and_source(self):
        assert parse_reference(f"serde 1.0.0 ({REGISTRY})") == ("serde", "1.0.0", REGISTRY)

    def test_empty_reference_raises(self):
        with pytest.raises(MalformedRecordError):
            parse_reference("   ")


class TestCargoResolution:
    """Tests for dependency reference resolution."""

    def test_versioned_references_pick_exact_version(self, build_cargo_graph):
        graph = build_cargo_graph(
            {
                "app 0.1.0": ["mio", "tokio"],
                "mio 0.8.10": ["windows-sys 0.48.0"],
                "tokio 1.35.0": ["mio", "windows-sys 0.42.0"],
                "windows-sys 0.42.0": [],
                "windows-sys 0.48.0": [],
            },
            dependencies=["mio", "tokio"],
        )

        assert graph.get_node(PackageId("mio", "0.8.10")).children == [
            PackageId("windows-sys", "0.48.0")
        ]
        assert graph.get_node(PackageId("tokio", "1.35.0")).children == [
            PackageId("mio", "0.8.10"),
            PackageId("windows-sys", "0.42.0"),
        ]

    def test_bare_reference_with_several_versions_is_ambiguous(self, build_cargo_graph):
        with pytest.raises(AmbiguousDependencyError) as exc_info:
            build_cargo_graph(
                {
                    "app 0.1.0": ["mio"],
                    "mio 0.8.10": ["windows-sys"],
                    "windows-sys 0.48.0": [],
                    "windows-sys 0.52.0": [],
                },
            )

        assert exc_info.value.name == "windows-sys"
        assert exc_info.value.requested_by == "mio@0.8.10"
        assert "0.48.0, 0.52.0" in str(exc_info.value)

    def test_unknown_version_is_unresolved(self, build_cargo_graph):
        with pytest.raises(UnresolvedDependencyError):
            build_cargo_graph({"app 0.1.0": ["serde 9.9.9"], "serde 1.0.0": []})


class TestCargoRoots:
    """Tests for root selection from workspace members."""

    def test_member_dependencies_become_roots(self, build_cargo_graph):
        graph = build_cargo_graph(
            {
                "app 0.1.0": ["serde", "tempfile"],
                "serde 1.0.0": [],
                "tempfile 3.9.0": [],
            },
            dependencies=["serde"],
            dev_dependencies=["tempfile"],
        )

        assert graph.roots() == [PackageId("serde", "1.0.0"), PackageId("tempfile", "3.9.0")]
        assert graph.get_node(PackageId("serde", "1.0.0")).kind == DependencyKind.DIRECT
        assert graph.get_node(PackageId("tempfile", "3.9.0")).kind == DependencyKind.DEV
        assert not graph.is_root(PackageId("app", "0.1.0"))

    def test_undeclared_member_dependency_defaults_to_direct(self, build_cargo_graph):
        graph = build_cargo_graph({"app 0.1.0": ["serde"], "serde 1.0.0": []})

        assert graph.get_node(PackageId("serde", "1.0.0")).kind == DependencyKind.DIRECT

    def test_explicit_members_select_roots(self):
        records = [
            {"name": "core", "version": "0.1.0", "dependencies": ["serde"]},
            {"name": "cli", "version": "0.1.0", "dependencies": ["core", "clap"]},
            {"name": "serde", "version": "1.0.0", "source": REGISTRY},
            {"name": "clap", "version": "4.4.0", "source": REGISTRY},
        ]
        manifest = ManifestInfo(members=["cli"])

        graph = CargoLockfileAdapter().build_graph(records, manifest).graph

        assert graph.roots() == [PackageId("core", "0.1.0"), PackageId("clap", "4.4.0")]

    def test_no_members_means_no_roots(self):
        records = [{"name": "serde", "version": "1.0.0", "source": REGISTRY}]

        graph = CargoLockfileAdapter().build_graph(records).graph

        assert graph.roots() == []
        assert len(graph) == 1
