# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Static import detector plugin.

Supports (import_statement nodes):
- import x from "pkg"
- import { a, b as c } from "pkg"   (may span several lines)
- import * as ns from "pkg"
- import type { T } from "pkg"
- import "pkg"   (side-effect import)
- import fs = require("fs")   (TypeScript import-equals)
"""

import logging
from typing import List

from .base import ImportSpecifier, Node, SpecifierDetector, SpecifierKind, line_of, literal_value

logger = logging.getLogger(__name__)


class StaticImportDetector(SpecifierDetector):
    """Detector for ES module import declarations.

    Priority: 100 (runs first; most specifiers in modern code are static)
    """

    def detect(self, node: Node, source: bytes, filepath: str) -> List[ImportSpecifier]:
        if node.type != "import_statement":
            return []

        source_node = node.child_by_field_name("source")
        if source_node is None:
            for child in node.named_children:
                if child.type == "import_require_clause":
                    source_node = child.child_by_field_name("source")
                    break

        specifier = literal_value(source_node, source)
        if not specifier:
            logger.debug(f"{filepath}:{line_of(node)}: import without a literal source")
            return []
        return [ImportSpecifier(specifier, SpecifierKind.STATIC, line_of(source_node))]

    def priority(self) -> int:
        return 100

    def name(self) -> str:
        return "StaticImportDetector"
