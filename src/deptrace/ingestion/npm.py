# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""npm (package-lock.json) ingestion adapter.

npm dependency references are bare package names. They are resolved the way
Node resolves require(): starting from the requiring package's install
location, look for node_modules/<name> in that directory, then in each
enclosing directory, up to the project root.

Examples for a record installed at node_modules/a/node_modules/b requiring c:
1. node_modules/a/node_modules/b/node_modules/c
2. node_modules/a/node_modules/c
3. node_modules/c
"""

import logging
from typing import Iterator, List, Optional, Tuple

from deptrace.models import DependencyKind, PackageId

from .base import LockfileAdapter, LockfileRecord, ManifestInfo, RecordIndex

logger = logging.getLogger(__name__)

NODE_MODULES = "node_modules"


def candidate_paths(install_path: str, name: str) -> Iterator[str]:
    """Yield install locations Node would search for `name`, nearest first.

    Args:
        install_path: Install location of the requiring package ("" for the project).
        name: Dependency package name (scoped names allowed).
    """
    base = install_path.rstrip("/")
    while True:
        yield f"{base}/{NODE_MODULES}/{name}" if base else f"{NODE_MODULES}/{name}"
        if not base:
            return
        idx = base.rfind(f"/{NODE_MODULES}/")
        base = base[:idx] if idx != -1 else ""


def package_name_from_path(install_path: str) -> str:
    """Extract the package name from an install location.

    - "node_modules/lodash" -> "lodash"
    - "node_modules/@types/node" -> "@types/node"
    - "node_modules/foo/node_modules/bar" -> "bar"
    """
    marker = f"{NODE_MODULES}/"
    idx = install_path.rfind(marker)
    if idx == -1:
        return ""
    name_part = install_path[idx + len(marker) :]
    segments = name_part.split("/")
    if name_part.startswith("@"):
        if len(segments) >= 2 and segments[1]:
            return f"{segments[0]}/{segments[1]}"
        return ""
    return segments[0]


class NpmLockfileAdapter(LockfileAdapter):
    """Builds a DependencyGraph from package-lock.json records."""

    def ecosystem(self) -> str:
        return "npm"

    def _resolve_reference(
        self,
        record: LockfileRecord,
        reference: str,
        index: RecordIndex,
    ) -> Optional[PackageId]:
        if record.path is not None:
            for path in candidate_paths(record.path, reference):
                found = index.at_path(path)
                if found is not None:
                    return found
        # No install layout to walk: only an unambiguous name is safe
        return index.unique(reference, requested_by=str(record.package_id))

    def _select_roots(
        self,
        manifest: ManifestInfo,
        index: RecordIndex,
    ) -> List[Tuple[PackageId, DependencyKind]]:
        roots: List[Tuple[PackageId, DependencyKind]] = []
        seen = set()
        for name in list(manifest.dependencies) + list(manifest.dev_dependencies):
            if name in seen:
                continue
            seen.add(name)

            package_id = index.at_path(f"{NODE_MODULES}/{name}")
            if package_id is None:
                package_id = index.unique(name, requested_by="package.json")
            if package_id is None:
                logger.warning(f"Declared dependency '{name}' is not installed, skipping")
                continue
            roots.append((package_id, manifest.kind_of(name)))
        return roots
