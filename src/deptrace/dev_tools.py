# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Dev-tool classifier.

Build tools, linters, test runners and type packages are declared as
dependencies but never imported by application code. An unimported package
that matches one of these patterns is an expected dev tool, not an unused
dependency.
"""

import fnmatch
import logging
from typing import FrozenSet, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

DEV_TOOL_NAMES = frozenset(
    [
        # TypeScript
        "typescript",
        "ts-node",
        "tsx",
        "ts-jest",
        "tsc",
        # Bundlers and build tools
        "vite",
        "webpack",
        "webpack-cli",
        "webpack-dev-server",
        "rollup",
        "esbuild",
        "parcel",
        "turbo",
        "nx",
        "tsup",
        "unbuild",
        "pkgroll",
        "microbundle",
        "tsdx",
        "preconstruct",
        "bunchee",
        # Linters and formatters
        "eslint",
        "prettier",
        "stylelint",
        "biome",
        "oxlint",
        "dprint",
        "xo",
        "standard",
        # Test runners
        "jest",
        "vitest",
        "mocha",
        "ava",
        "tap",
        "c8",
        "nyc",
        "playwright",
        "cypress",
        "@playwright/test",
        "uvu",
        # Dev servers and watchers
        "nodemon",
        "ts-node-dev",
        "tsnd",
        "concurrently",
        "npm-run-all",
        "npm-run-all2",
        "cross-env",
        "wait-on",
        # File utilities
        "rimraf",
        "del-cli",
        "copyfiles",
        "cpy-cli",
        "mkdirp",
        "shx",
        # Git hooks and commits
        "husky",
        "lint-staged",
        "commitlint",
        "simple-git-hooks",
        "lefthook",
        # Versioning and release
        "semantic-release",
        "release-it",
        "standard-version",
        "bumpp",
        "changelogithub",
        "changelogen",
        "np",
        "lerna",
        "changeset",
        # Patching
        "patch-package",
        "pnpm-patch",
        # Documentation
        "typedoc",
        "jsdoc",
        "documentation",
        "api-extractor",
        # Package checks
        "attw",
        "publint",
        "arethetypeswrong",
        "knip",
        "depcheck",
    ]
)

DEV_TOOL_PREFIXES = (
    "@types/",
    "@typescript-eslint/",
    "@eslint/",
    "eslint-plugin-",
    "eslint-config-",
    "@vitejs/",
    "@rollup/",
    "@babel/",
    "babel-",
    "@swc/",
    "@jest/",
    "@testing-library/",
    "@vitest/",
    "prettier-plugin-",
    "@commitlint/",
    "@changesets/",
)

DEV_TOOL_PATTERNS = ("eslint*", "*-loader", "@storybook/*")


class DevToolClassifier:
    """Splits unused candidates into expected dev tools and truly unused packages.

    Args:
        extra_patterns: Additional fnmatch patterns (from configuration).
            A pattern without wildcards matches the exact name.
    """

    def __init__(self, extra_patterns: Optional[Iterable[str]] = None):
        self.patterns: List[str] = list(DEV_TOOL_PATTERNS) + list(extra_patterns or [])

    def is_dev_tool(self, name: str) -> bool:
        """Check if a package name is recognized build/dev tooling."""
        if name in DEV_TOOL_NAMES or name.startswith(DEV_TOOL_PREFIXES):
            return True
        return any(fnmatch.fnmatchcase(name, pattern) for pattern in self.patterns)

    def classify(self, unused: Iterable[str]) -> Tuple[FrozenSet[str], FrozenSet[str]]:
        """Classify unused candidates.

        Args:
            unused: Declared package names that are never imported.

        Returns:
            Tuple of (dev_tools, truly_unused).
        """
        dev_tools = set()
        truly_unused = set()
        for name in unused:
            if self.is_dev_tool(name):
                dev_tools.add(name)
            else:
                truly_unused.add(name)
        return frozenset(dev_tools), frozenset(truly_unused)
