# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Advisory source abstraction.

The Vulnerability Matcher never talks to an advisory database directly. It
queries an AdvisorySource per package name, so the backend can be swapped
without touching matching logic.

Components:
- AdvisoryRecord: One vulnerability advisory (read-only)
- AdvisorySource: Abstract interface for advisory backends
- InMemoryAdvisorySource: Backend over records held in memory
- load_advisory_database(): Builds an InMemoryAdvisorySource from a local
  YAML or JSON file

Database file format:

    advisories:
      - id: GHSA-xvch-5gv4-984h
        package: minimist
        range: "<1.2.6"
        severity: critical
        summary: Prototype Pollution in minimist
        fixed: 1.2.6
    deprecated:
      request:
        2.88.2: request has been deprecated
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

import yaml

logger = logging.getLogger(__name__)


class AdvisoryUnavailableError(Exception):
    """Raised when advisories for a package cannot be retrieved.

    Non-fatal: the matcher degrades that package to an "unknown" finding.
    """

    def __init__(self, package_name: str, reason: str = ""):
        self.package_name = package_name
        self.reason = reason
        message = f"Advisories unavailable for '{package_name}'"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class AdvisoryDatabaseError(Exception):
    """Raised when an advisory database file cannot be read or is invalid."""

    pass


@dataclass(frozen=True)
class AdvisoryRecord:
    """One published advisory.

    Attributes:
        id: Advisory identifier (GHSA-..., RUSTSEC-..., CVE-...).
        package_name: Affected package name.
        affected_range: Version range expression of affected versions.
        severity: critical, high, medium (or moderate), low, informational.
        summary: One-line description.
        fixed_version: First fixed version, if any.
    """

    id: str
    package_name: str
    affected_range: str
    severity: str
    summary: str = ""
    fixed_version: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "package": self.package_name,
            "range": self.affected_range,
            "severity": self.severity,
            "summary": self.summary,
            "fixed": self.fixed_version,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AdvisoryRecord":
        """Create from a database entry.

        Raises:
            AdvisoryDatabaseError: If a required field is missing.
        """
        missing = [key for key in ("id", "package", "range") if not data.get(key)]
        if missing:
            raise AdvisoryDatabaseError(
                f"Advisory entry is missing {', '.join(missing)}: {dict(data)}"
            )
        fixed = data.get("fixed")
        return cls(
            id=str(data["id"]),
            package_name=str(data["package"]),
            affected_range=str(data["range"]),
            severity=str(data.get("severity") or "unknown").lower(),
            summary=str(data.get("summary") or ""),
            fixed_version=str(fixed) if fixed is not None else None,
        )


class AdvisorySource(ABC):
    """Abstract interface for advisory backends.

    Implementations may be called from several lookup workers at once and
    must be safe for concurrent reads.
    """

    @abstractmethod
    def advisories(self, package_name: str) -> List[AdvisoryRecord]:
        """Get every advisory published for a package name.

        Returns:
            Advisories for the package. Empty list if none are known.

        Raises:
            AdvisoryUnavailableError: If the backend cannot answer for this package.
        """
        pass

    @abstractmethod
    def deprecation(self, package_name: str, version: str) -> Optional[str]:
        """Get the deprecation note of an exact package version.

        Returns:
            Deprecation message, or None if that version is not deprecated.

        Raises:
            AdvisoryUnavailableError: If the backend cannot answer for this package.
        """
        pass


class InMemoryAdvisorySource(AdvisorySource):
    """Advisory backend over records held in memory.

    Read-only after construction, so concurrent lookups need no locking.
    """

    def __init__(
        self,
        records: Iterable[AdvisoryRecord] = (),
        deprecations: Optional[Mapping[str, Mapping[str, str]]] = None,
    ):
        self._by_package: Dict[str, List[AdvisoryRecord]] = {}
        for record in records:
            self._by_package.setdefault(record.package_name, []).append(record)
        self._deprecations: Dict[str, Dict[str, str]] = {
            name: {str(version): str(note) for version, note in versions.items()}
            for name, versions in (deprecations or {}).items()
        }

    def advisories(self, package_name: str) -> List[AdvisoryRecord]:
        return list(self._by_package.get(package_name, []))

    def deprecation(self, package_name: str, version: str) -> Optional[str]:
        return self._deprecations.get(package_name, {}).get(version)

    def count(self) -> int:
        return sum(len(records) for records in self._by_package.values())


def load_advisory_database(path: Path) -> InMemoryAdvisorySource:
    """Load a local advisory database file.

    YAML is a superset of JSON, so both formats load through yaml.safe_load.

    Raises:
        AdvisoryDatabaseError: If the file is missing, unparseable or invalid.
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise AdvisoryDatabaseError(f"Cannot read advisory database {path}: {e}") from e
    except yaml.YAMLError as e:
        raise AdvisoryDatabaseError(f"Invalid advisory database {path}: {e}") from e

    if not isinstance(data, dict):
        raise AdvisoryDatabaseError(f"Advisory database {path} must be a mapping")

    entries = data.get("advisories") or []
    deprecated = data.get("deprecated") or {}
    if not isinstance(entries, list) or not isinstance(deprecated, dict):
        raise AdvisoryDatabaseError(
            f"Advisory database {path}: 'advisories' must be a list and "
            f"'deprecated' a mapping"
        )
    for name, versions in deprecated.items():
        if not isinstance(versions, dict):
            raise AdvisoryDatabaseError(
                f"Advisory database {path}: deprecated entry '{name}' must map versions to notes"
            )

    records: List[AdvisoryRecord] = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise AdvisoryDatabaseError(f"Advisory database {path}: invalid entry {entry!r}")
        records.append(AdvisoryRecord.from_dict(entry))
    source = InMemoryAdvisorySource(records, deprecated)
    logger.info(
        f"Loaded {len(records)} advisories and {len(deprecated)} deprecated packages from {path}"
    )
    return source
