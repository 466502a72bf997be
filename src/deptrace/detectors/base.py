# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Base interface for import specifier detector plugins.

Detectors extract raw module specifiers from JavaScript/TypeScript syntax
trees built by tree-sitter. They never resolve specifiers; mapping a
specifier to an installed package is the Usage Resolver's job.

The registry parses each file once and hands every node of the tree to every
detector, so a detector only has to recognize the node shapes of its own
syntax. Comments and string contents are leaves of the tree and never look
like imports.
"""

from abc import ABC, abstractmethod
from typing import Any, List, NamedTuple, Optional

# tree_sitter.Node
Node = Any


class SpecifierKind:
    """Syntax an import specifier was collected from."""

    STATIC = "static"  # import x from "pkg"; import "pkg"
    RE_EXPORT = "re-export"  # export { x } from "pkg"; export * from "pkg"
    DYNAMIC = "dynamic"  # import("pkg")
    REQUIRE = "require"  # require("pkg"); require.resolve("pkg")

    ALL = (STATIC, RE_EXPORT, DYNAMIC, REQUIRE)


class ImportSpecifier(NamedTuple):
    """A raw module specifier found in a source file."""

    specifier: str
    kind: str
    line: int = 0


class SpecifierDetector(ABC):
    """Abstract base class for specifier detector plugins.

    Detectors are independent and stateless. Each one recognizes a single
    syntax (static import, re-export, dynamic import, require call).
    """

    @abstractmethod
    def detect(self, node: Node, source: bytes, filepath: str) -> List[ImportSpecifier]:
        """Detect specifiers in one syntax tree node.

        Args:
            node: tree-sitter node to check (children are visited separately).
            source: Encoded file contents the tree was parsed from.
            filepath: Path of the file being analyzed (for logging).

        Returns:
            List of specifiers. Empty list if the node is not this syntax.
        """
        pass

    @abstractmethod
    def priority(self) -> int:
        """Return detector priority for execution order.

        Higher priority detectors execute first.
        """
        pass

    @abstractmethod
    def name(self) -> str:
        """Return detector name for logging and debugging."""
        pass


def node_text(node: Node, source: bytes) -> str:
    return source[node.start_byte : node.end_byte].decode("utf-8", errors="replace")


def line_of(node: Node) -> int:
    """1-based line number where a node starts."""
    return int(node.start_point[0]) + 1


def is_interpolated(node: Node) -> bool:
    """True for a template string containing ${...} substitutions."""
    return node.type == "template_string" and any(
        child.type == "template_substitution" for child in node.named_children
    )


def literal_value(node: Optional[Node], source: bytes) -> Optional[str]:
    """Contents of a string literal or a template string without substitutions.

    Returns:
        The text between the quotes, or None for any other expression.
    """
    if node is None or node.type not in ("string", "template_string"):
        return None
    if is_interpolated(node):
        return None
    # Strip the delimiting quote or backtick on each side
    return source[node.start_byte + 1 : node.end_byte - 1].decode("utf-8", errors="replace")


def first_argument(call: Node) -> Optional[Node]:
    """First argument node of a call_expression, if any."""
    arguments = call.child_by_field_name("arguments")
    if arguments is None:
        return None
    values = [child for child in arguments.named_children if child.type != "comment"]
    return values[0] if values else None
