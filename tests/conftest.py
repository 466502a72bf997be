# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Shared fixtures for deptrace tests.

Provides small in-memory graphs and representative npm and Cargo projects
written to tmp_path.
"""

import json
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from deptrace.ingestion import CargoLockfileAdapter, ManifestInfo, NpmLockfileAdapter
from deptrace.models import DependencyGraph

GraphBuilder = Callable[..., DependencyGraph]


@pytest.fixture
def build_cargo_graph() -> GraphBuilder:
    """Build a frozen graph from compact Cargo-style records.

    Usage:
        build_cargo_graph(
            {"app 0.1.0": ["serde"], "serde 1.0.0": []},
            dependencies=["serde"],
        )

    The first record is the workspace member (no source); all others get a
    registry source.
    """

    def build(
        packages: Dict[str, List[str]],
        dependencies: Optional[List[str]] = None,
        dev_dependencies: Optional[List[str]] = None,
    ) -> DependencyGraph:
        records = []
        for index, (key, deps) in enumerate(packages.items()):
            name, version = key.split(" ")
            record = {"name": name, "version": version, "dependencies": deps}
            if index > 0:
                record["source"] = "registry+https://github.com/rust-lang/crates.io-index"
            records.append(record)
        manifest = ManifestInfo(
            dependencies=list(dependencies or []),
            dev_dependencies=list(dev_dependencies or []),
        )
        return CargoLockfileAdapter().build_graph(records, manifest).graph

    return build


@pytest.fixture
def vite_graph() -> DependencyGraph:
    """npm graph: dev root vite -> esbuild, production root react -> loose-envify."""
    records = [
        {"name": "react", "version": "18.2.0", "dependencies": ["loose-envify"],
         "path": "node_modules/react"},
        {"name": "loose-envify", "version": "1.4.0", "path": "node_modules/loose-envify"},
        {"name": "vite", "version": "5.0.0", "dependencies": ["esbuild"],
         "flags": ["dev"], "path": "node_modules/vite"},
        {"name": "esbuild", "version": "0.21.5", "flags": ["dev"],
         "path": "node_modules/esbuild"},
    ]
    manifest = ManifestInfo(dependencies=["react"], dev_dependencies=["vite"])
    return NpmLockfileAdapter().build_graph(records, manifest).graph


PACKAGE_JSON = {
    "name": "demo-app",
    "version": "1.0.0",
    "dependencies": {
        "react": "^18.2.0",
        "lodash": "^4.17.21",
        "left-pad": "^1.3.0",
        "@scope/ui": "^2.0.0",
        "minimist": "^1.2.5",
    },
    "devDependencies": {
        "vite": "^5.0.0",
        "typescript": "^5.3.0",
        "@types/node": "^20.0.0",
    },
}

PACKAGE_LOCK = {
    "name": "demo-app",
    "version": "1.0.0",
    "lockfileVersion": 3,
    "requires": True,
    "packages": {
        "": {
            "name": "demo-app",
            "version": "1.0.0",
            "dependencies": PACKAGE_JSON["dependencies"],
            "devDependencies": PACKAGE_JSON["devDependencies"],
        },
        "node_modules/react": {
            "version": "18.2.0",
            "dependencies": {"loose-envify": "^1.1.0"},
        },
        "node_modules/loose-envify": {
            "version": "1.4.0",
            "dependencies": {"js-tokens": "^3.0.0 || ^4.0.0"},
        },
        "node_modules/js-tokens": {"version": "4.0.0"},
        "node_modules/lodash": {"version": "4.17.21"},
        "node_modules/left-pad": {
            "version": "1.3.0",
            "deprecated": "use String.prototype.padStart()",
        },
        "node_modules/@scope/ui": {
            "version": "2.1.0",
            "dependencies": {"js-tokens": "^3.0.0"},
        },
        "node_modules/@scope/ui/node_modules/js-tokens": {"version": "3.0.2"},
        "node_modules/minimist": {"version": "1.2.5"},
        "node_modules/vite": {
            "version": "5.0.0",
            "dev": True,
            "dependencies": {"esbuild": "^0.21.3", "rollup": "^4.2.0"},
            "optionalDependencies": {"fsevents": "~2.3.3"},
        },
        "node_modules/esbuild": {"version": "0.21.5", "dev": True},
        "node_modules/rollup": {"version": "4.9.0", "dev": True},
        "node_modules/typescript": {"version": "5.3.3", "dev": True},
        "node_modules/@types/node": {
            "version": "20.10.0",
            "dev": True,
            "dependencies": {"undici-types": "~5.26.4"},
        },
        "node_modules/undici-types": {"version": "5.26.5", "dev": True},
    },
}

ADVISORY_DATABASE = """\
advisories:
  - id: GHSA-xvch-5gv4-984h
    package: minimist
    range: "<1.2.6"
    severity: critical
    summary: Prototype Pollution in minimist
    fixed: 1.2.6
  - id: GHSA-35jh-r3h4-6jhm
    package: lodash
    range: "<4.17.21"
    severity: high
    summary: Command Injection in lodash
    fixed: 4.17.21
  - id: BROKEN-1
    package: js-tokens
    range: "not-a-range"
    severity: low
deprecated:
  rollup:
    "4.9.0": rollup 4.9.0 has a broken build, upgrade to 4.9.1
"""


@pytest.fixture
def npm_project(tmp_path: Path) -> Path:
    """Create a representative npm project.

    Creates:
    - package.json / package-lock.json (lockfileVersion 3) with a js-tokens
      duplicate, a deprecated package and dev tooling
    - src/ files using static, re-export, dynamic and require syntax
    - node_modules/ source that must never be scanned
    - advisories.yml local advisory database

    Returns:
        Path to the project root directory
    """
    root = tmp_path / "demo-app"
    root.mkdir()
    (root / "package.json").write_text(json.dumps(PACKAGE_JSON, indent=2))
    (root / "package-lock.json").write_text(json.dumps(PACKAGE_LOCK, indent=2))
    (root / "advisories.yml").write_text(ADVISORY_DATABASE)

    src = root / "src"
    src.mkdir()
    (src / "index.ts").write_text(
        'import React from "react";\n'
        'import { debounce } from "lodash/debounce";\n'
        'import fs from "node:fs";\n'
        'import { helper } from "./helper";\n'
        '// import leftPad from "left-pad";\n'
        'export * from "@scope/ui/components";\n'
        'const chalk = require("chalk");\n'
    )
    (src / "helper.js").write_text(
        'const path = require("path");\n'
        "module.exports = {\n"
        '  helper: () => import("minimist"),\n'
        "};\n"
    )

    vendored = root / "node_modules" / "lodash"
    vendored.mkdir(parents=True)
    (vendored / "index.js").write_text('module.exports = require("left-pad");\n')

    return root


CARGO_TOML = """\
[package]
name = "demo-cli"
version = "0.1.0"
edition = "2021"

[dependencies]
tokio = { version = "1", features = ["full"] }
mio = "0.8"

[dev-dependencies]
tempfile = "3"

[target.'cfg(windows)'.dependencies]
winapi-util = "0.1"
"""

CARGO_LOCK = """\
# This file is automatically @generated by Cargo.
version = 3

[[package]]
name = "demo-cli"
version = "0.1.0"
dependencies = [
 "mio",
 "tempfile",
 "tokio",
 "winapi-util",
]

[[package]]
name = "mio"
version = "0.8.10"
source = "registry+https://github.com/rust-lang/crates.io-index"
dependencies = [
 "windows-sys 0.48.0",
]

[[package]]
name = "tempfile"
version = "3.9.0"
source = "registry+https://github.com/rust-lang/crates.io-index"
dependencies = [
 "windows-sys 0.52.0",
]

[[package]]
name = "tokio"
version = "1.35.0"
source = "registry+https://github.com/rust-lang/crates.io-index"
dependencies = [
 "mio",
 "windows-sys 0.42.0",
]

[[package]]
name = "winapi-util"
version = "0.1.6"
source = "registry+https://github.com/rust-lang/crates.io-index"
dependencies = [
 "windows-sys 0.59.0",
]

[[package]]
name = "windows-sys"
version = "0.42.0"
source = "registry+https://github.com/rust-lang/crates.io-index"

[[package]]
name = "windows-sys"
version = "0.48.0"
source = "registry+https://github.com/rust-lang/crates.io-index"

[[package]]
name = "windows-sys"
version = "0.52.0"
source = "registry+https://github.com/rust-lang/crates.io-index"

[[package]]
name = "windows-sys"
version = "0.59.0"
source = "registry+https://github.com/rust-lang/crates.io-index"
"""


@pytest.fixture
def cargo_project(tmp_path: Path) -> Path:
    """Create a Cargo project with windows-sys installed at 4 versions.

    Each windows-sys version is pulled in by a different crate:
    tokio (0.42.0), mio (0.48.0), tempfile (0.52.0), winapi-util (0.59.0).

    Returns:
        Path to the project root directory
    """
    root = tmp_path / "demo-cli"
    root.mkdir()
    (root / "Cargo.toml").write_text(CARGO_TOML)
    (root / "Cargo.lock").write_text(CARGO_LOCK)
    return root
