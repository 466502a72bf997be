# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Lockfile and manifest loaders.

Reads lockfiles from disk and turns them into LockfileRecord lists plus a
ManifestInfo, ready for an ingestion adapter:
- npm: package-lock.json (v1 nested format, v2/v3 "packages" map) and package.json
- Cargo: Cargo.lock ([[package]] array) and Cargo.toml (including workspace members)

Loaders only parse; graph construction and reference resolution happen in
deptrace.ingestion.
"""

import json
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Set

from deptrace.ingestion.base import IngestionError, LockfileRecord, ManifestInfo
from deptrace.ingestion.npm import NODE_MODULES, package_name_from_path

# Python 3.11+ has tomllib built-in, earlier versions need tomli
if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

logger = logging.getLogger(__name__)

# Detection order: first match wins
SUPPORTED_LOCKFILES = [
    ("Cargo.lock", "cargo"),
    ("package-lock.json", "npm"),
    ("npm-shrinkwrap.json", "npm"),
]
UNSUPPORTED_LOCKFILES = ["pnpm-lock.yaml", "yarn.lock", "bun.lockb"]

CARGO_DEPENDENCY_TABLES = ["dependencies", "build-dependencies"]
CARGO_DEV_DEPENDENCY_TABLES = ["dev-dependencies"]

# Linked workspace packages often omit "version" (private apps)
WORKSPACE_VERSION = "0.0.0-workspace"


class LockfileNotFoundError(IngestionError):
    """Raised when no supported lockfile exists in the project root."""

    pass


class UnsupportedLockfileError(IngestionError):
    """Raised when the project uses a lockfile format that cannot be read."""

    pass


class LockfileParseError(IngestionError):
    """Raised when a lockfile or manifest is not valid JSON/TOML."""

    pass


@dataclass
class LoadedProject:
    """Parsed lockfile contents for one project."""

    ecosystem: str
    lockfile_path: Path
    records: List[LockfileRecord] = field(default_factory=list)
    manifest: ManifestInfo = field(default_factory=ManifestInfo)


def detect_lockfile(project_root: Path) -> Path:
    """Find the lockfile for a project.

    Args:
        project_root: Project directory.

    Returns:
        Path to the lockfile.

    Raises:
        UnsupportedLockfileError: If only an unsupported lockfile is present.
        LockfileNotFoundError: If no lockfile is present at all.
    """
    for filename, _ecosystem in SUPPORTED_LOCKFILES:
        candidate = project_root / filename
        if candidate.is_file():
            return candidate

    for filename in UNSUPPORTED_LOCKFILES:
        if (project_root / filename).is_file():
            raise UnsupportedLockfileError(
                f"{filename} is not supported yet, expected one of "
                f"{', '.join(name for name, _ in SUPPORTED_LOCKFILES)}"
            )

    raise LockfileNotFoundError(
        f"No lockfile found in {project_root}. Run 'npm install' or 'cargo generate-lockfile' first"
    )


def load_project(project_root: Path) -> LoadedProject:
    """Detect and load the lockfile of a project.

    Raises:
        LockfileNotFoundError: If no lockfile is present.
        UnsupportedLockfileError: If the lockfile format is not supported.
        LockfileParseError: If the lockfile cannot be parsed.
    """
    lockfile = detect_lockfile(project_root)
    if lockfile.name == "Cargo.lock":
        return load_cargo_project(project_root, lockfile)
    return load_npm_project(project_root, lockfile)


def _read_json(path: Path) -> Dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise LockfileParseError(f"Failed to parse {path}: {e}") from e
    if not isinstance(data, dict):
        raise LockfileParseError(f"Failed to parse {path}: top level is not an object")
    return data


def _read_toml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise LockfileParseError(f"Failed to parse {path}: {e}") from e


# =============================================================================
# npm
# =============================================================================


def load_npm_project(project_root: Path, lockfile: Optional[Path] = None) -> LoadedProject:
    """Load package-lock.json and package.json.

    Args:
        project_root: Project directory.
        lockfile: Lockfile path. Defaults to <project_root>/package-lock.json.

    Returns:
        LoadedProject for the "npm" ecosystem.
    """
    lockfile = lockfile or project_root / "package-lock.json"
    data = _read_json(lockfile)

    packages = data.get("packages")
    if isinstance(packages, dict) and len(packages) > 1:
        records = _npm_records_from_packages(packages)
    else:
        records = _npm_records_from_dependencies(data.get("dependencies") or {}, "")

    manifest = ManifestInfo()
    package_json = project_root / "package.json"
    if package_json.is_file():
        manifest_data = _read_json(package_json)
        manifest.dependencies = list((manifest_data.get("dependencies") or {}).keys())
        manifest.dev_dependencies = list((manifest_data.get("devDependencies") or {}).keys())
    elif isinstance(packages, dict) and isinstance(packages.get(""), dict):
        # package.json missing: the lockfile root entry carries the same declarations
        root_entry = packages[""]
        manifest.dependencies = list((root_entry.get("dependencies") or {}).keys())
        manifest.dev_dependencies = list((root_entry.get("devDependencies") or {}).keys())
    else:
        logger.warning(f"No package.json in {project_root}, graph will have no roots")

    logger.info(
        f"Loaded {len(records)} npm records from {lockfile.name} "
        f"(lockfileVersion {data.get('lockfileVersion', 'unknown')})"
    )
    return LoadedProject(
        ecosystem="npm", lockfile_path=lockfile, records=records, manifest=manifest
    )


def _npm_flags(entry: Mapping[str, Any]) -> Set[str]:
    flags = set()
    for flag in ("dev", "optional", "peer", "devOptional"):
        if entry.get(flag):
            flags.add("dev" if flag == "devOptional" else flag)
    return flags


def _npm_records_from_packages(packages: Mapping[str, Any]) -> List[LockfileRecord]:
    """Records from the v2/v3 "packages" map keyed by install path."""
    records: List[LockfileRecord] = []
    for path, entry in packages.items():
        # "" is the project itself; other keys without node_modules are workspace sources
        if not path or f"{NODE_MODULES}/" not in path or not isinstance(entry, dict):
            continue

        name = package_name_from_path(path)
        if not name:
            continue

        flags = _npm_flags(entry)
        version = entry.get("version") or ""
        if entry.get("link"):
            target = packages.get(entry.get("resolved", ""))
            if not isinstance(target, dict):
                logger.debug(f"Skipping link {path}: target {entry.get('resolved')} not found")
                continue
            entry = target
            flags.add("workspace")
            version = entry.get("version") or version or WORKSPACE_VERSION

        optional = list((entry.get("optionalDependencies") or {}).keys())
        optional += [
            peer
            for peer in (entry.get("peerDependencies") or {}).keys()
            if peer not in optional
        ]
        records.append(
            LockfileRecord(
                name=name,
                version=version,
                dependencies=[
                    dep for dep in (entry.get("dependencies") or {}).keys() if dep not in optional
                ],
                optional_dependencies=optional,
                flags=frozenset(flags),
                path=path,
                deprecated=entry.get("deprecated"),
            )
        )
    return records


def _npm_records_from_dependencies(
    dependencies: Mapping[str, Any], parent_path: str
) -> List[LockfileRecord]:
    """Records from the v1 nested "dependencies" tree, synthesizing install paths."""
    records: List[LockfileRecord] = []
    for name, entry in dependencies.items():
        if not isinstance(entry, dict):
            continue
        path = f"{parent_path}/{NODE_MODULES}/{name}" if parent_path else f"{NODE_MODULES}/{name}"
        records.append(
            LockfileRecord(
                name=name,
                version=entry.get("version") or "",
                dependencies=list((entry.get("requires") or {}).keys()),
                flags=frozenset(_npm_flags(entry)),
                path=path,
                deprecated=entry.get("deprecated"),
            )
        )
        records.extend(_npm_records_from_dependencies(entry.get("dependencies") or {}, path))
    return records


# =============================================================================
# Cargo
# =============================================================================


def load_cargo_project(project_root: Path, lockfile: Optional[Path] = None) -> LoadedProject:
    """Load Cargo.lock and Cargo.toml.

    Args:
        project_root: Project directory.
        lockfile: Lockfile path. Defaults to <project_root>/Cargo.lock.

    Returns:
        LoadedProject for the "cargo" ecosystem.
    """
    lockfile = lockfile or project_root / "Cargo.lock"
    data = _read_toml(lockfile)

    records: List[LockfileRecord] = []
    for entry in data.get("package") or []:
        if not isinstance(entry, dict):
            continue
        source = entry.get("source")
        records.append(
            LockfileRecord(
                name=entry.get("name") or "",
                version=entry.get("version") or "",
                dependencies=list(entry.get("dependencies") or []),
                flags=frozenset() if source else frozenset({"workspace"}),
                source=source,
            )
        )

    manifest = ManifestInfo()
    cargo_toml = project_root / "Cargo.toml"
    if cargo_toml.is_file():
        manifest = _cargo_manifest(project_root, _read_toml(cargo_toml))
    else:
        logger.warning(f"No Cargo.toml in {project_root}, using lockfile workspace members")

    logger.info(
        f"Loaded {len(records)} Cargo records from {lockfile.name} "
        f"(format version {data.get('version', 1)})"
    )
    return LoadedProject(
        ecosystem="cargo", lockfile_path=lockfile, records=records, manifest=manifest
    )


def _cargo_manifest(project_root: Path, data: Mapping[str, Any]) -> ManifestInfo:
    """Collect members and their declared dependencies from Cargo.toml files."""
    manifest = ManifestInfo()
    manifests = [data]

    workspace = data.get("workspace") or {}
    for pattern in workspace.get("members") or []:
        for member_dir in sorted(project_root.glob(pattern)):
            member_toml = member_dir / "Cargo.toml"
            if member_toml.is_file():
                manifests.append(_read_toml(member_toml))
            else:
                logger.debug(f"Workspace member {member_dir} has no Cargo.toml, skipping")

    for member in manifests:
        package = member.get("package") or {}
        if package.get("name") and package["name"] not in manifest.members:
            manifest.members.append(package["name"])

        tables = [member]
        tables.extend(
            spec for spec in (member.get("target") or {}).values() if isinstance(spec, dict)
        )
        for table in tables:
            for section in CARGO_DEPENDENCY_TABLES:
                _add_cargo_names(manifest.dependencies, table.get(section))
            for section in CARGO_DEV_DEPENDENCY_TABLES:
                _add_cargo_names(manifest.dev_dependencies, table.get(section))

    return manifest


def _add_cargo_names(names: List[str], section: Optional[Mapping[str, Any]]) -> None:
    for key, spec in (section or {}).items():
        # foo = { package = "bar" } depends on crate bar under the local name foo
        name = spec.get("package", key) if isinstance(spec, dict) else key
        if name not in names:
            names.append(name)
