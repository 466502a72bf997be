# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""require() detector plugin.

Supports:
- require("pkg")
- require.resolve("pkg")
- const x = require(`pkg`)   (template literal without interpolation)

Only calls whose callee is the bare identifier require (or require.resolve)
count. Member calls such as loader.require("x") and other identifiers
(myrequire("x"), $require("x")) are ignored.
"""

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


class RequireDetector(SpecifierDetector):
    """Detector for CommonJS require calls.

    Priority: 40
    """

    def detect(self, node: Node, source: bytes, filepath: str) -> List[ImportSpecifier]:
        if node.type != "call_expression":
            return []
        if not self._is_require(node.child_by_field_name("function"), source):
            return []

        argument = first_argument(node)
        specifier = literal_value(argument, source)
        if not specifier:
            return []
        return [ImportSpecifier(specifier, SpecifierKind.REQUIRE, line_of(argument))]

    @staticmethod
    def _is_require(function: Node, source: bytes) -> bool:
        if function is None:
            return False
        if function.type == "identifier":
            return node_text(function, source) == "require"
        if function.type == "member_expression":
            target = function.child_by_field_name("object")
            member = function.child_by_field_name("property")
            return (
                target is not None
                and member is not None
                and target.type == "identifier"
                and node_text(target, source) == "require"
                and node_text(member, source) == "resolve"
            )
        return False

    def priority(self) -> int:
        return 40

    def name(self) -> str:
        return "RequireDetector"
