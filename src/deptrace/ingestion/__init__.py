# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Lockfile ingestion adapters.

Each adapter converts parsed lockfile records for one ecosystem into a
frozen DependencyGraph. Use get_adapter() to pick one by ecosystem name.
"""

from typing import Dict, Type

from .base import (
    AmbiguousDependencyError,
    IngestionError,
    IngestionReport,
    LockfileAdapter,
    LockfileRecord,
    MalformedRecordError,
    ManifestInfo,
    RecordIndex,
    UnresolvedDependencyError,
)
from .cargo import CargoLockfileAdapter
from .npm import NpmLockfileAdapter

ADAPTERS: Dict[str, Type[LockfileAdapter]] = {
    "npm": NpmLockfileAdapter,
    "cargo": CargoLockfileAdapter,
}


def get_adapter(ecosystem: str, strict: bool = True) -> LockfileAdapter:
    """Create the ingestion adapter for an ecosystem.

    Raises:
        ValueError: If the ecosystem is not supported.
    """
    try:
        adapter_cls = ADAPTERS[ecosystem]
    except KeyError:
        raise ValueError(
            f"Unsupported ecosystem '{ecosystem}', expected one of {sorted(ADAPTERS)}"
        ) from None
    return adapter_cls(strict=strict)


__all__ = [
    "ADAPTERS",
    "AmbiguousDependencyError",
    "CargoLockfileAdapter",
    "IngestionError",
    "IngestionReport",
    "LockfileAdapter",
    "LockfileRecord",
    "MalformedRecordError",
    "ManifestInfo",
    "NpmLockfileAdapter",
    "RecordIndex",
    "UnresolvedDependencyError",
    "get_adapter",
]
