# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Registry for specifier detector plugins.

extract() parses a file with the tree-sitter grammar for its extension and
dispatches every node of the tree to every registered detector.
"""

import logging
import threading
from pathlib import PurePath
from typing import Dict, List

from tree_sitter_language_pack import get_parser

from .base import ImportSpecifier, Node, SpecifierDetector

logger = logging.getLogger(__name__)

# File extension -> tree-sitter grammar
GRAMMARS: Dict[str, str] = {
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".mts": "typescript",
    ".cts": "typescript",
    ".tsx": "tsx",
}
DEFAULT_GRAMMAR = "typescript"


class DetectorRegistry:
    """Registry for specifier detector plugins with priority-based dispatch.

    Thread Safety:
    - Register all detectors during initialization. After that the registry
      is only read, so extract() may be called from several scan workers.
    - tree-sitter parsers are not shared between threads; each worker thread
      gets its own parser per grammar.
    """

    def __init__(self) -> None:
        """Initialize empty detector registry."""
        self._detectors: List[SpecifierDetector] = []
        self._sorted: bool = True
        self._local = threading.local()

    def register(self, detector: SpecifierDetector) -> None:
        """Register a detector plugin.

        Raises:
            TypeError: If detector is not a SpecifierDetector instance.
        """
        if not isinstance(detector, SpecifierDetector):
            raise TypeError(
                f"Detector must be a SpecifierDetector instance, got {type(detector)}"
            )

        self._detectors.append(detector)
        self._sorted = False

        logger.debug(f"Registered detector '{detector.name()}' with priority {detector.priority()}")

    def get_detectors(self) -> List[SpecifierDetector]:
        """Get all registered detectors, highest priority first."""
        if not self._sorted:
            # Sort by priority (highest first), then by name for stability
            self._detectors.sort(key=lambda d: (-d.priority(), d.name()))
            self._sorted = True

        return self._detectors

    def extract(self, source: str, filepath: str = "<source>") -> List[ImportSpecifier]:
        """Parse a source file and run every detector over its syntax tree.

        Files with syntax errors are still walked; tree-sitter wraps the
        unparseable region in ERROR nodes and keeps the rest of the tree.

        Args:
            source: Raw file contents.
            filepath: Path of the file; its extension picks the grammar.

        Returns:
            Specifiers from all detectors, in source order.
        """
        encoded = source.encode("utf-8")
        tree = self._parser_for(filepath).parse(encoded)
        if tree.root_node.has_error:
            logger.debug(f"{filepath}: syntax errors, scanning the parseable part")

        detectors = self.get_detectors()
        found: List[ImportSpecifier] = []
        for node in _walk(tree.root_node):
            for detector in detectors:
                found.extend(detector.detect(node, encoded, filepath))
        # sort is stable, so specifiers on one line keep their source order
        found.sort(key=lambda s: s.line)
        return found

    def clear(self) -> None:
        """Remove all registered detectors."""
        self._detectors.clear()
        self._sorted = True

    def count(self) -> int:
        return len(self._detectors)

    def _parser_for(self, filepath: str):
        grammar = GRAMMARS.get(PurePath(filepath).suffix.lower(), DEFAULT_GRAMMAR)
        parsers = getattr(self._local, "parsers", None)
        if parsers is None:
            parsers = self._local.parsers = {}
        if grammar not in parsers:
            parsers[grammar] = get_parser(grammar)
        return parsers[grammar]


def _walk(root: Node):
    """Yield every node of a tree in pre-order (source order)."""
    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))
