# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Re-export detector plugin.

Supports (export_statement nodes with a source):
- export * from "pkg"
- export * as ns from "pkg"
- export { a, b as c } from "pkg"
- export type { T } from "pkg"
"""

from typing import List

from .base import ImportSpecifier, Node, SpecifierDetector, SpecifierKind, line_of, literal_value


class ReExportDetector(SpecifierDetector):
    """Detector for export ... from declarations.

    Priority: 90
    """

    def detect(self, node: Node, source: bytes, filepath: str) -> List[ImportSpecifier]:
        if node.type != "export_statement":
            return []
        source_node = node.child_by_field_name("source")
        specifier = literal_value(source_node, source)
        if not specifier:
            return []
        return [ImportSpecifier(specifier, SpecifierKind.RE_EXPORT, line_of(source_node))]

    def priority(self) -> int:
        return 90

    def name(self) -> str:
        return "ReExportDetector"
