# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Dynamic import detector plugin.

Detects import("pkg") expressions with a literal argument. Template literals
that interpolate (import(`./locale/${lang}`)) and non-literal arguments cannot
be resolved statically and are skipped.
"""

import logging
from typing import List

from .base import (
    ImportSpecifier,
    Node,
    SpecifierDetector,
    SpecifierKind,
    first_argument,
    line_of,
    literal_value,
    node_text,
)

logger = logging.getLogger(__name__)


class DynamicImportDetector(SpecifierDetector):
    """Detector for import() expressions.

    Priority: 50
    """

    def detect(self, node: Node, source: bytes, filepath: str) -> List[ImportSpecifier]:
        if node.type != "call_expression":
            return []
        function = node.child_by_field_name("function")
        if function is None or function.type != "import":
            return []

        argument = first_argument(node)
        specifier = literal_value(argument, source)
        if not specifier:
            if argument is not None:
                logger.debug(
                    f"{filepath}:{line_of(node)}: skipping non-literal "
                    f"import({node_text(argument, source)})"
                )
            return []
        return [ImportSpecifier(specifier, SpecifierKind.DYNAMIC, line_of(argument))]

    def priority(self) -> int:
        return 50

    def name(self) -> str:
        return "DynamicImportDetector"
