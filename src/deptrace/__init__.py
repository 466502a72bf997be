# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""deptrace: dependency usage, chain, duplicate and advisory analysis."""

from .advisory_source import AdvisoryRecord, AdvisorySource, InMemoryAdvisorySource
from .chain_tracer import ChainTracer, Explanation, PackageNotFoundError
from .config import Config
from .dev_tools import DevToolClassifier
from .duplicates import DuplicateAnalyzer, DuplicateCluster, DuplicateReport
from .models import DependencyGraph, DependencyKind, PackageId, PackageNode
from .service import DependencyAnalysisService, UsageAnalysis
from .usage_resolver import UsageResolver, UsageResult, extract_package_name
from .vulnerability import AuditReport, DeprecatedPackage, Finding, VulnerabilityMatcher

__version__ = "0.1.0"

__all__ = [
    "AdvisoryRecord",
    "AdvisorySource",
    "InMemoryAdvisorySource",
    "ChainTracer",
    "Explanation",
    "PackageNotFoundError",
    "Config",
    "DevToolClassifier",
    "DuplicateAnalyzer",
    "DuplicateCluster",
    "DuplicateReport",
    "DependencyGraph",
    "DependencyKind",
    "PackageId",
    "PackageNode",
    "DependencyAnalysisService",
    "UsageAnalysis",
    "UsageResolver",
    "UsageResult",
    "extract_package_name",
    "AuditReport",
    "DeprecatedPackage",
    "Finding",
    "VulnerabilityMatcher",
]

# Conditional import for MCP server (requires the mcp package)
try:
    from .mcp_server import DependencyAuditMCPServer

    __all__.append("DependencyAuditMCPServer")
except ImportError:
    # MCP package not available
    pass
