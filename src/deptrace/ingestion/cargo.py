# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Cargo (Cargo.lock) ingestion adapter.

Cargo.lock lists every package in a flat [[package]] array. Dependency
entries take one of three forms:
- "name"                     only one version of name is installed
- "name version"             several versions installed, exact match needed
- "name version (source)"    same name and version from several sources

A bare name that matches several installed versions cannot be resolved
without guessing, so it is reported as AmbiguousDependencyError.
"""

import logging
from typing import List, Optional, Set, Tuple

from deptrace.models import DependencyKind, PackageId

from .base import LockfileAdapter, LockfileRecord, MalformedRecordError, ManifestInfo, RecordIndex

logger = logging.getLogger(__name__)


def parse_reference(reference: str) -> Tuple[str, Optional[str], Optional[str]]:
    """Split a Cargo.lock dependency entry into (name, version, source).

    Raises:
        MalformedRecordError: If the entry is empty.
    """
    text = reference.strip()
    source: Optional[str] = None
    if text.endswith(")") and "(" in text:
        idx = text.index("(")
        source = text[idx + 1 : -1].strip() or None
        text = text[:idx].strip()

    parts = text.split()
    if not parts:
        raise MalformedRecordError(f"Empty Cargo dependency reference: {reference!r}")
    version = parts[1] if len(parts) > 1 else None
    return parts[0], version, source


class CargoLockfileAdapter(LockfileAdapter):
    """Builds a DependencyGraph from Cargo.lock records."""

    def ecosystem(self) -> str:
        return "cargo"

    def _resolve_reference(
        self,
        record: LockfileRecord,
        reference: str,
        index: RecordIndex,
    ) -> Optional[PackageId]:
        name, version, _source = parse_reference(reference)
        if version is not None:
            if index.has(name, version):
                return PackageId(name, version)
            return None
        return index.unique(name, requested_by=str(record.package_id))

    def _select_roots(
        self,
        manifest: ManifestInfo,
        index: RecordIndex,
    ) -> List[Tuple[PackageId, DependencyKind]]:
        if manifest.members:
            members = [r for r in index.records if r.name in manifest.members]
        else:
            members = [r for r in index.records if r.source is None]
        if not members:
            logger.warning("No workspace member found in Cargo.lock, graph has no roots")

        roots: List[Tuple[PackageId, DependencyKind]] = []
        seen: Set[PackageId] = set()
        for member in members:
            for reference in member.dependencies + member.optional_dependencies:
                target = self._resolve_reference(member, reference, index)
                if target is None or target in seen or target == member.package_id:
                    continue
                seen.add(target)

                kind = manifest.kind_of(target.name)
                if kind == DependencyKind.TRANSITIVE:
                    kind = DependencyKind.DIRECT
                roots.append((target, kind))
        return roots
