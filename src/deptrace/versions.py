# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Semantic version helpers.

Thin layer over the semantic_version library:
- parse_version(): strict parse with a coercing fallback
- version_sort_key(): total ordering that tolerates non-semver strings
- compatibility_key(): the component that must match for two versions to be
  semver-compatible (major, or minor for 0.x releases)
- VersionRange: advisory range expressions (operators, conjunctions, ||,
  hyphen ranges, caret, tilde and x-range shorthand)
"""

import logging
import re
from typing import List, Optional, Tuple, Union

from semantic_version import SimpleSpec, Version

logger = logging.getLogger(__name__)


class VersionRangeError(ValueError):
    """Raised when a version range expression cannot be parsed."""

    pass


def parse_version(text: str) -> Optional[Version]:
    """Parse a version string, coercing partial forms like "1.2" or "v1".

    Returns:
        Parsed Version, or None if the string is not a usable version.
    """
    if not text:
        return None
    cleaned = text.strip().lstrip("vV=")
    try:
        return Version(cleaned)
    except ValueError:
        pass
    try:
        return Version.coerce(cleaned)
    except ValueError:
        logger.debug(f"Unparseable version string: {text!r}")
        return None


def version_sort_key(text: str) -> Tuple[int, Union[Version, str]]:
    """Sort key ordering semantic versions first (ascending), then raw strings."""
    parsed = parse_version(text)
    if parsed is None:
        return (1, text)
    return (0, parsed)


def compatibility_key(text: str) -> Optional[Tuple[int, ...]]:
    """Get the semver compatibility component of a version.

    Versions with the same key are expected to be API compatible:
    - 1.4.2 -> (1,)
    - 0.3.9 -> (0, 3)

    Returns:
        Compatibility tuple, or None if the version cannot be parsed.
    """
    parsed = parse_version(text)
    if parsed is None:
        return None
    if parsed.major > 0:
        return (parsed.major,)
    return (0, parsed.minor)


_OPERATORS = ("<=", ">=", "<", ">", "==", "=", "^", "~")
_BLOCK = re.compile(
    r"^(?P<op><=|>=|<|>|==|=|\^|~)?v?"
    r"(?P<version>(?:\d+|[xX*])(?:\.(?:\d+|[xX*])){0,2}"
    r"(?:-[0-9A-Za-z.-]*)?(?:\+[0-9A-Za-z.-]*)?)$"
)


def _simple_block(block: str) -> str:
    """Rewrite one npm-style comparator ("1.2.x", "=v1.0.0") as a SimpleSpec block."""
    match = _BLOCK.match(block)
    if not match:
        raise VersionRangeError(f"Invalid comparator {block!r}")
    version = match.group("version")
    core, sep, rest = version.partition("-") if "-" in version else version.partition("+")
    core = ".".join("*" if part in ("x", "X") else part for part in core.split("."))
    return f"{match.group('op') or ''}{core}{sep}{rest}"


def _simple_blocks(alternative: str) -> List[str]:
    """Split one alternative into SimpleSpec blocks.

    Accepts hyphen ranges ("1.0.0 - 1.2.0"), comma or whitespace separated
    comparators, and operators written apart from their version (">= 1.8.4").
    """
    if " - " in alternative:
        low, _, high = alternative.partition(" - ")
        return [_simple_block(f">={low.strip()}"), _simple_block(f"<={high.strip()}")]

    blocks: List[str] = []
    pending_op = ""
    for token in alternative.replace(",", " ").split():
        if token in _OPERATORS:
            if pending_op:
                raise VersionRangeError(f"Operator {pending_op!r} has no version")
            pending_op = token
            continue
        blocks.append(_simple_block(pending_op + token))
        pending_op = ""
    if pending_op:
        raise VersionRangeError(f"Operator {pending_op!r} has no version")
    return blocks


class VersionRange:
    """An affected-version range expression.

    Supported forms:
    - Comparisons: "<1.2.6", ">=1.0.0", ">= 1.8.4"
    - Conjunctions: ">=1.0.0, <1.2.6" or ">=1.0.0 <1.2.6"
    - Alternatives: "<1.0.5 || >=2.0.0 <2.0.3"
    - Hyphen ranges: "1.0.0 - 1.2.0"
    - Shorthand: "^1.2.0", "~1.2", "1.x", "*"

    Prerelease versions are compared in semver order, so "1.0.0-rc.1" is
    inside "<1.2.6". npm's rule of hiding prereleases from ranges that do
    not name one is meant for picking versions to install, not for deciding
    whether an installed version is affected.
    """

    def __init__(self, expression: str):
        """Parse the expression.

        Raises:
            VersionRangeError: If any alternative cannot be parsed.
        """
        self.expression = expression
        self._specs: List[SimpleSpec] = []

        if not expression or not expression.strip():
            raise VersionRangeError("Empty version range")

        for alternative in expression.split("||"):
            alternative = alternative.strip()
            if not alternative:
                raise VersionRangeError(f"Empty alternative in range {expression!r}")
            try:
                self._specs.append(SimpleSpec(",".join(_simple_blocks(alternative))))
            except ValueError as e:
                raise VersionRangeError(f"Invalid version range {expression!r}: {e}") from e

    def contains(self, version: Union[str, Version]) -> bool:
        """Check whether a version falls inside the range.

        Unparseable version strings are never inside any range.
        """
        parsed = version if isinstance(version, Version) else parse_version(version)
        if parsed is None:
            return False
        return any(spec.match(parsed) for spec in self._specs)

    def __contains__(self, version: object) -> bool:
        if not isinstance(version, (str, Version)):
            return False
        return self.contains(version)

    def __repr__(self) -> str:
        return f"VersionRange({self.expression!r})"
