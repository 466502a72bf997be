# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Detector plugins for import specifier extraction from JS/TS source.

Components:
- SpecifierDetector: Abstract base class for detector plugins
- DetectorRegistry: Parses files with tree-sitter and dispatches nodes by priority
- StaticImportDetector: import declarations
- ReExportDetector: export ... from declarations
- DynamicImportDetector: import() expressions
- RequireDetector: CommonJS require() calls
"""

from deptrace.detectors.base import ImportSpecifier, SpecifierDetector, SpecifierKind
from deptrace.detectors.dynamic_import_detector import DynamicImportDetector
from deptrace.detectors.re_export_detector import ReExportDetector
from deptrace.detectors.registry import DetectorRegistry
from deptrace.detectors.require_detector import RequireDetector
from deptrace.detectors.static_import_detector import StaticImportDetector


def create_default_registry() -> DetectorRegistry:
    """Create a registry with all four specifier detectors registered."""
    registry = DetectorRegistry()
    registry.register(StaticImportDetector())
    registry.register(ReExportDetector())
    registry.register(DynamicImportDetector())
    registry.register(RequireDetector())
    return registry


__all__ = [
    # Base classes
    "SpecifierDetector",
    "DetectorRegistry",
    "ImportSpecifier",
    "SpecifierKind",
    "create_default_registry",
    # Detectors
    "StaticImportDetector",
    "ReExportDetector",
    "DynamicImportDetector",
    "RequireDetector",
]
