# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Tests for lockfile and manifest loaders."""

import json

import pytest

from deptrace.loaders import (
    WORKSPACE_VERSION,
    LockfileNotFoundError,
    LockfileParseError,
    UnsupportedLockfileError,
    detect_lockfile,
    load_cargo_project,
    load_npm_project,
    load_project,
)


def _records_by_path(project):
    return {record.path: record for record in project.records}


class TestDetectLockfile:
    """Tests for detect_lockfile()."""

    def test_detects_package_lock(self, npm_project):
        assert detect_lockfile(npm_project).name == "package-lock.json"

    def test_detects_cargo_lock(self, cargo_project):
        assert detect_lockfile(cargo_project).name == "Cargo.lock"

    def test_shrinkwrap_is_supported(self, tmp_path):
        (tmp_path / "npm-shrinkwrap.json").write_text("{}")

        assert detect_lockfile(tmp_path).name == "npm-shrinkwrap.json"

    @pytest.mark.parametrize("filename", ["pnpm-lock.yaml", "yarn.lock", "bun.lockb"])
    def test_unsupported_lockfiles(self, tmp_path, filename):
        (tmp_path / filename).write_text("")

        with pytest.raises(UnsupportedLockfileError, match=filename):
            detect_lockfile(tmp_path)

    def test_no_lockfile(self, tmp_path):
        with pytest.raises(LockfileNotFoundError):
            detect_lockfile(tmp_path)


class TestLoadNpmProject:
    """Tests for package-lock.json loading."""

    def test_v3_packages_map(self, npm_project):
        project = load_npm_project(npm_project)
        records = _records_by_path(project)

        assert project.ecosystem == "npm"
        assert "" not in records
        assert len(project.records) == 14

        nested = records["node_modules/@scope/ui/node_modules/js-tokens"]
        assert (nested.name, nested.version) == ("js-tokens", "3.0.2")

        vite = records["node_modules/vite"]
        assert vite.dependencies == ["esbuild", "rollup"]
        assert vite.optional_dependencies == ["fsevents"]
        assert vite.flags == frozenset({"dev"})

        assert records["node_modules/left-pad"].deprecated == "use String.prototype.padStart()"

    def test_manifest_from_package_json(self, npm_project):
        manifest = load_npm_project(npm_project).manifest

        assert manifest.dependencies == ["react", "lodash", "left-pad", "@scope/ui", "minimist"]
        assert manifest.dev_dependencies == ["vite", "typescript", "@types/node"]

    def test_manifest_falls_back_to_lockfile_root_entry(self, npm_project):
        (npm_project / "package.json").unlink()

        manifest = load_npm_project(npm_project).manifest

        assert "react" in manifest.dependencies
        assert "vite" in manifest.dev_dependencies

    def test_v1_nested_dependencies(self, tmp_path):
        lock = {
            "lockfileVersion": 1,
            "dependencies": {
                "a": {
                    "version": "1.0.0",
                    "requires": {"b": "^1.0.0"},
                    "dependencies": {"b": {"version": "1.0.0", "dev": True}},
                },
                "b": {"version": "2.0.0"},
            },
        }
        (tmp_path / "package-lock.json").write_text(json.dumps(lock))

        records = _records_by_path(load_npm_project(tmp_path))

        assert set(records) == {
            "node_modules/a",
            "node_modules/a/node_modules/b",
            "node_modules/b",
        }
        assert records["node_modules/a"].dependencies == ["b"]
        assert records["node_modules/a/node_modules/b"].flags == frozenset({"dev"})

    def test_workspace_link_resolves_to_target(self, tmp_path):
        lock = {
            "lockfileVersion": 3,
            "packages": {
                "": {"name": "monorepo"},
                "packages/shared": {"name": "@repo/shared", "version": "0.0.1",
                                    "dependencies": {"lodash": "^4.0.0"}},
                "node_modules/@repo/shared": {"resolved": "packages/shared", "link": True},
                "node_modules/lodash": {"version": "4.17.21"},
            },
        }
        (tmp_path / "package-lock.json").write_text(json.dumps(lock))

        records = _records_by_path(load_npm_project(tmp_path))

        shared = records["node_modules/@repo/shared"]
        assert (shared.name, shared.version) == ("@repo/shared", "0.0.1")
        assert shared.dependencies == ["lodash"]
        assert "workspace" in shared.flags
        assert "packages/shared" not in records

    def test_workspace_link_without_version(self, tmp_path):
        """Private workspace apps without a version get a placeholder version."""
        lock = {
            "lockfileVersion": 3,
            "packages": {
                "": {"name": "monorepo", "workspaces": ["apps/*"]},
                "apps/web": {"name": "web", "dependencies": {"lodash": "^4.17.21"}},
                "node_modules/web": {"resolved": "apps/web", "link": True},
                "node_modules/lodash": {"version": "4.17.21"},
            },
        }
        (tmp_path / "package-lock.json").write_text(json.dumps(lock))

        records = _records_by_path(load_npm_project(tmp_path))

        web = records["node_modules/web"]
        assert (web.name, web.version) == ("web", WORKSPACE_VERSION)
        assert web.dependencies == ["lodash"]
        assert "workspace" in web.flags

    def test_peer_dependencies_are_optional(self, tmp_path):
        lock = {
            "lockfileVersion": 3,
            "packages": {
                "": {},
                "node_modules/plugin": {
                    "version": "1.0.0",
                    "dependencies": {"core": "^1.0.0"},
                    "peerDependencies": {"react": "*"},
                    "devOptional": True,
                },
                "node_modules/core": {"version": "1.0.0"},
            },
        }
        (tmp_path / "package-lock.json").write_text(json.dumps(lock))

        plugin = _records_by_path(load_npm_project(tmp_path))["node_modules/plugin"]

        assert plugin.dependencies == ["core"]
        assert plugin.optional_dependencies == ["react"]
        assert plugin.flags == frozenset({"dev"})

    def test_invalid_json_raises_parse_error(self, tmp_path):
        (tmp_path / "package-lock.json").write_text("{not json")

        with pytest.raises(LockfileParseError):
            load_npm_project(tmp_path)


class TestLoadCargoProject:
    """Tests for Cargo.lock and Cargo.toml loading."""

    def test_records_and_sources(self, cargo_project):
        project = load_cargo_project(cargo_project)
        by_name = {(r.name, r.version): r for r in project.records}

        assert project.ecosystem == "cargo"
        assert len(project.records) == 9
        assert by_name[("demo-cli", "0.1.0")].flags == frozenset({"workspace"})
        assert by_name[("demo-cli", "0.1.0")].source is None
        assert by_name[("mio", "0.8.10")].dependencies == ["windows-sys 0.48.0"]

    def test_manifest_tables(self, cargo_project):
        manifest = load_cargo_project(cargo_project).manifest

        assert manifest.members == ["demo-cli"]
        assert manifest.dependencies == ["tokio", "mio", "winapi-util"]
        assert manifest.dev_dependencies == ["tempfile"]

    def test_workspace_members_and_renames(self, tmp_path):
        (tmp_path / "Cargo.toml").write_text('[workspace]\nmembers = ["crates/*"]\n')
        cli = tmp_path / "crates" / "cli"
        cli.mkdir(parents=True)
        (cli / "Cargo.toml").write_text(
            '[package]\nname = "cli"\nversion = "0.1.0"\n\n'
            '[dependencies]\nargs = { package = "clap", version = "4" }\n'
        )
        (tmp_path / "crates" / "notes").mkdir()
        (tmp_path / "Cargo.lock").write_text(
            'version = 3\n\n[[package]]\nname = "cli"\nversion = "0.1.0"\n'
        )

        manifest = load_cargo_project(tmp_path).manifest

        assert manifest.members == ["cli"]
        assert manifest.dependencies == ["clap"]

    def test_invalid_toml_raises_parse_error(self, tmp_path):
        (tmp_path / "Cargo.lock").write_text("[[package]\nname = ")

        with pytest.raises(LockfileParseError):
            load_cargo_project(tmp_path)


class TestLoadProject:
    """Tests for load_project() dispatch."""

    def test_dispatches_by_lockfile(self, npm_project, cargo_project):
        assert load_project(npm_project).ecosystem == "npm"
        assert load_project(cargo_project).ecosystem == "cargo"
