# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Usage resolver: import specifiers to the set of used package names.

Each source file supplies a sequence of raw specifiers. Every specifier is
reduced to its top-level package name:
- "lodash/fp" -> "lodash"
- "@scope/pkg/sub/path" -> "@scope/pkg"
- "./local", "../utils", "/abs" -> not a package
- "fs", "fs/promises", "node:fs" -> Node built-in, not a package

Files are processed in parallel. Each worker builds a local set for its file
and the local sets are folded into one UsedSet afterwards, so workers share
no mutable state.
"""

import concurrent.futures
import logging
import re
import threading
from dataclasses import dataclass, field
from typing import (
    Any,
    Callable,
    Dict,
    FrozenSet,
    Iterable,
    List,
    Optional,
    Set,
    Tuple,
    Union,
)

from deptrace.detectors.base import ImportSpecifier, SpecifierKind

logger = logging.getLogger(__name__)

NODE_BUILTINS = frozenset(
    [
        "assert",
        "async_hooks",
        "buffer",
        "child_process",
        "cluster",
        "console",
        "constants",
        "crypto",
        "dgram",
        "diagnostics_channel",
        "dns",
        "domain",
        "events",
        "fs",
        "http",
        "http2",
        "https",
        "inspector",
        "module",
        "net",
        "os",
        "path",
        "perf_hooks",
        "process",
        "punycode",
        "querystring",
        "readline",
        "repl",
        "stream",
        "string_decoder",
        "sys",
        "timers",
        "tls",
        "trace_events",
        "tty",
        "url",
        "util",
        "v8",
        "vm",
        "wasi",
        "worker_threads",
        "zlib",
    ]
)

# node:fs, https://cdn..., virtual:my-module, data:text/javascript,...
_URL_SCHEME = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*:")

SpecifierItem = Union[str, Tuple[str, str], ImportSpecifier]
SpecifierSource = Tuple[str, Callable[[], Iterable[SpecifierItem]]]


class AnalysisCancelledError(Exception):
    """Raised when an analysis is cancelled between units of work."""

    pass


def is_node_builtin(specifier: str) -> bool:
    """Check if a specifier names a Node.js built-in module."""
    if specifier.startswith("node:"):
        return True
    return specifier.split("/", 1)[0] in NODE_BUILTINS


def extract_package_name(specifier: str) -> Optional[str]:
    """Extract the top-level package name from an import specifier.

    Returns:
        Package name, or None for relative paths, built-ins, URLs, package
        "#imports" aliases and malformed scoped specifiers.
    """
    specifier = specifier.strip()
    if not specifier or specifier[0] in "./#":
        return None
    if is_node_builtin(specifier) or _URL_SCHEME.match(specifier):
        return None

    parts = specifier.split("/")
    if specifier.startswith("@"):
        if len(parts) < 2 or len(parts[0]) < 2 or not parts[1]:
            return None
        return f"{parts[0]}/{parts[1]}"
    return parts[0]


def _specifier_text(item: SpecifierItem) -> str:
    if isinstance(item, str):
        return item
    if isinstance(item, ImportSpecifier):
        return item.specifier
    specifier, kind = item
    if kind not in SpecifierKind.ALL:
        logger.debug(f"Unknown specifier kind {kind!r} for {specifier!r}")
    return specifier


@dataclass
class UsageResult:
    """Outcome of resolving the specifiers of every scanned file.

    Attributes:
        used: Top-level names imported somewhere and installed (UsedSet).
        missing: Names imported but not installed.
        usages: Name -> sorted files importing it.
        files_scanned: Files whose specifiers were read.
        files_skipped: Files that could not be read or decoded.
        import_count: External (package) specifiers seen across all files.
    """

    used: FrozenSet[str] = frozenset()
    missing: FrozenSet[str] = frozenset()
    usages: Dict[str, List[str]] = field(default_factory=dict)
    files_scanned: int = 0
    files_skipped: int = 0
    import_count: int = 0
    skipped_files: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "used": sorted(self.used),
            "missing": sorted(self.missing),
            "usages": {name: list(files) for name, files in sorted(self.usages.items())},
            "files_scanned": self.files_scanned,
            "files_skipped": self.files_skipped,
            "skipped_files": list(self.skipped_files),
            "import_count": self.import_count,
        }


class UsageResolver:
    """Builds the UsedSet from per-file specifier sources.

    Args:
        installed_names: Names present in the dependency graph. When given,
            imported names outside it are reported as missing instead of used.
        max_workers: Upper bound on concurrently processed files.
        cancel_event: Event checked between files; set it to cancel.
    """

    DEFAULT_MAX_WORKERS = 8

    def __init__(
        self,
        installed_names: Optional[Iterable[str]] = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.installed_names = frozenset(installed_names) if installed_names is not None else None
        self.max_workers = max(1, max_workers)
        self.cancel_event = cancel_event or threading.Event()

    def cancel(self) -> None:
        """Request cancellation; pending files are not started."""
        self.cancel_event.set()

    def resolve(self, sources: Iterable[SpecifierSource]) -> UsageResult:
        """Resolve every file's specifiers into a UsageResult.

        Args:
            sources: (file_id, provider) pairs. Each provider returns a fresh
                iterable of specifiers when called.

        Raises:
            AnalysisCancelledError: If cancellation was requested.
        """
        sources = list(sources)
        per_file: List[Tuple[str, Set[str], int]] = []
        skipped: List[str] = []

        with concurrent.futures.ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                executor.submit(self._resolve_file, file_id, provider): file_id
                for file_id, provider in sources
            }
            try:
                for future in concurrent.futures.as_completed(futures):
                    file_id = futures[future]
                    try:
                        per_file.append(future.result())
                    except (UnicodeDecodeError, OSError) as e:
                        logger.warning(f"Skipping {file_id}: {e}")
                        skipped.append(file_id)
            except AnalysisCancelledError:
                for pending in futures:
                    pending.cancel()
                raise

        if self.cancel_event.is_set():
            raise AnalysisCancelledError("Usage analysis cancelled")

        return self._fold(per_file, sorted(skipped))

    def _resolve_file(
        self, file_id: str, provider: Callable[[], Iterable[SpecifierItem]]
    ) -> Tuple[str, Set[str], int]:
        if self.cancel_event.is_set():
            raise AnalysisCancelledError(f"Usage analysis cancelled before {file_id}")

        names: Set[str] = set()
        count = 0
        for item in provider():
            name = extract_package_name(_specifier_text(item))
            if name is not None:
                names.add(name)
                count += 1
        return file_id, names, count

    def _fold(self, per_file: List[Tuple[str, Set[str], int]], skipped: List[str]) -> UsageResult:
        imported: Set[str] = set()
        usages: Dict[str, List[str]] = {}
        import_count = 0

        for file_id, names, count in per_file:
            imported |= names
            import_count += count
            for name in names:
                usages.setdefault(name, []).append(file_id)

        for files in usages.values():
            files.sort()

        if self.installed_names is None:
            used = frozenset(imported)
            missing: FrozenSet[str] = frozenset()
        else:
            used = frozenset(imported & self.installed_names)
            missing = frozenset(imported - self.installed_names)

        logger.info(
            f"Resolved {import_count} package imports in {len(per_file)} files: "
            f"{len(used)} used packages, {len(missing)} missing, {len(skipped)} files skipped"
        )
        return UsageResult(
            used=used,
            missing=missing,
            usages=usages,
            files_scanned=len(per_file),
            files_skipped=len(skipped),
            import_count=import_count,
            skipped_files=skipped,
        )
