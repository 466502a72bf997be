# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""JavaScript/TypeScript source scanner.

Finds the project's source files and exposes them to the Usage Resolver as
specifier sources: (file_id, provider) pairs where calling the provider reads
the file and returns the specifiers found by the detector registry.

Reading is deferred to the provider so that files are read inside the
resolver's worker pool, and a file that fails to decode only affects its own
provider call.
"""

import fnmatch
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from deptrace.detectors import DetectorRegistry, ImportSpecifier, create_default_registry

logger = logging.getLogger(__name__)

SpecifierProvider = Callable[[], Iterable[ImportSpecifier]]
SpecifierSource = Tuple[str, SpecifierProvider]


class SourceScanner:
    """Collects JS/TS source files and their import specifiers.

    Skipped:
    - Build output and tool directories (node_modules, dist, build, ...)
    - Hidden directories
    - Paths matching configured ignore patterns
    - Files above the size limit
    """

    DEFAULT_EXTENSIONS = [".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs", ".mts", ".cts"]
    SKIPPED_DIRECTORIES = frozenset(
        {"node_modules", "dist", "build", ".git", "coverage", ".next", "target"}
    )
    DEFAULT_MAX_FILE_SIZE_KB = 1024

    def __init__(
        self,
        project_root: Path,
        registry: Optional[DetectorRegistry] = None,
        source_extensions: Optional[List[str]] = None,
        ignore_patterns: Optional[List[str]] = None,
        max_file_size_kb: int = DEFAULT_MAX_FILE_SIZE_KB,
    ):
        """Initialize scanner.

        Args:
            project_root: Directory to scan.
            registry: Detector registry. Defaults to all four specifier detectors.
            source_extensions: File extensions to scan (with leading dot).
            ignore_patterns: fnmatch patterns matched against relative paths and names.
            max_file_size_kb: Files larger than this are skipped.
        """
        self.project_root = Path(project_root)
        self.registry = registry or create_default_registry()
        self.source_extensions = frozenset(
            ext if ext.startswith(".") else f".{ext}"
            for ext in (source_extensions or self.DEFAULT_EXTENSIONS)
        )
        self.ignore_patterns = list(ignore_patterns or [])
        self.max_file_size_bytes = max_file_size_kb * 1024
        self.stats: Dict[str, Any] = {"found": 0, "ignored": 0, "oversized": 0}

    def should_ignore(self, path: Path) -> bool:
        """Check if a path matches any configured ignore pattern."""
        try:
            rel_path_str = path.relative_to(self.project_root).as_posix()
        except ValueError:
            rel_path_str = path.as_posix()

        for pattern in self.ignore_patterns:
            if fnmatch.fnmatch(rel_path_str, pattern) or fnmatch.fnmatch(path.name, pattern):
                return True
        return False

    def find_source_files(self) -> List[Path]:
        """Walk the project and return source files in sorted, stable order."""
        self.stats = {"found": 0, "ignored": 0, "oversized": 0}
        files: List[Path] = []

        for dirpath, dirnames, filenames in os.walk(self.project_root):
            current = Path(dirpath)
            dirnames[:] = sorted(
                d
                for d in dirnames
                if d not in self.SKIPPED_DIRECTORIES
                and not d.startswith(".")
                and not self.should_ignore(current / d)
            )

            for filename in sorted(filenames):
                path = current / filename
                if path.suffix not in self.source_extensions or filename.endswith(".d.ts"):
                    continue
                if self.should_ignore(path):
                    self.stats["ignored"] += 1
                    continue
                try:
                    size = path.stat().st_size
                except OSError as e:
                    logger.warning(f"Cannot stat {path}: {e}")
                    continue
                if size > self.max_file_size_bytes:
                    logger.warning(
                        f"Skipping {path}: {size} bytes exceeds limit ({self.max_file_size_bytes})"
                    )
                    self.stats["oversized"] += 1
                    continue
                files.append(path)

        files.sort()
        self.stats["found"] = len(files)
        logger.debug(f"Found {len(files)} source files under {self.project_root}")
        return files

    def read_specifiers(self, path: Path) -> List[ImportSpecifier]:
        """Read a file and extract its specifiers.

        Raises:
            UnicodeDecodeError: If the file is not valid UTF-8.
            OSError: If the file cannot be read.
        """
        with open(path, encoding="utf-8") as f:
            source = f.read()
        return self.registry.extract(source, str(path))

    def specifier_sources(self) -> List[SpecifierSource]:
        """Build (file_id, provider) pairs for every source file.

        file_id is the path relative to the project root, in POSIX form.
        """
        sources: List[SpecifierSource] = []
        for path in self.find_source_files():
            file_id = path.relative_to(self.project_root).as_posix()
            sources.append((file_id, self._provider(path)))
        return sources

    def _provider(self, path: Path) -> SpecifierProvider:
        def provide() -> List[ImportSpecifier]:
            return self.read_specifiers(path)

        return provide
