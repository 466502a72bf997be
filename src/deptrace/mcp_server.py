# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""MCP Server Protocol Layer for deptrace.

This module exposes the dependency analyses as MCP tools. It contains no
business logic: every tool builds a fresh DependencyAnalysisService for the
requested project and returns its result as a JSON-compatible dict.
"""

import argparse
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from mcp.server.fastmcp import Context, FastMCP
from mcp.server.session import ServerSession

from deptrace.advisory_source import AdvisorySource
from deptrace.config import Config
from deptrace.logging_setup import ProjectLogAdapter, setup_logging
from deptrace.service import DependencyAnalysisService

logger = logging.getLogger(__name__)


class DependencyAuditMCPServer:
    """MCP Protocol Layer for deptrace.

    Responsibilities:
    - Initialize MCP server and register tools
    - Translate tool invocations into service calls
    - Report failures through the MCP context and re-raise them

    Args:
        config: Configuration applied to every project. If None, each project
            loads its own .deptrace.yml.
        advisory_source: Advisory backend shared by all tool calls. If None,
            each service uses its configured database.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        advisory_source: Optional[AdvisorySource] = None,
    ):
        self.config = config
        self.advisory_source = advisory_source

        self.mcp = FastMCP(name="deptrace")
        self._register_tools()

        logger.info("DependencyAuditMCPServer initialized")

    def create_service(self, project_root: str) -> DependencyAnalysisService:
        """Build a fresh service for one tool invocation.

        Raises:
            NotADirectoryError: If project_root is not a directory.
        """
        root = Path(project_root).expanduser().resolve()
        if not root.is_dir():
            raise NotADirectoryError(f"Project root is not a directory: {project_root}")
        return DependencyAnalysisService(
            root, config=self.config, advisory_source=self.advisory_source
        )

    async def _run_tool(
        self,
        ctx: Context[ServerSession, None],
        description: str,
        project_root: str,
        call: Callable[[DependencyAnalysisService], Any],
    ) -> Dict[str, Any]:
        await ctx.info(f"{description}: {project_root}")
        service: Optional[DependencyAnalysisService] = None
        try:
            service = self.create_service(project_root)
            result = call(service)
            response: Dict[str, Any] = result.to_dict()
            service.log.info(f"{description} finished")
            await ctx.info(f"{description} finished for {project_root}")
            return response
        except Exception as e:
            log = service.log if service is not None else ProjectLogAdapter.for_project(
                logger, project_root
            )
            log.error(f"{description} failed: {e}")
            await ctx.error(f"{description} failed for {project_root}: {e}")
            raise

    def _register_tools(self) -> None:
        """Register MCP tools with the server.

        Registers:
        - analyze_dependencies: Used, unused and dev-tool dependencies
        - why_package: Dependency chains leading to a package
        - find_duplicates: Packages installed at several versions
        - audit_vulnerabilities: Installed versions with known advisories
        - list_deprecated: Installed versions marked deprecated
        """

        @self.mcp.tool()
        async def analyze_dependencies(
            project_root: str,
            ctx: Context[ServerSession, None],
        ) -> Dict[str, Any]:
            """Find which declared npm dependencies the project's code actually imports.

            Args:
                project_root: Directory holding package.json and package-lock.json
                ctx: MCP context for logging

            Returns:
                Dictionary with used, unused, dev_tools, undeclared and missing
                package names plus scan counts.
            """
            return await self._run_tool(
                ctx, "Analyzing dependencies", project_root, lambda s: s.analyze()
            )

        @self.mcp.tool()
        async def why_package(
            project_root: str,
            package: str,
            ctx: Context[ServerSession, None],
            version: Optional[str] = None,
        ) -> Dict[str, Any]:
            """Explain why a package is installed.

            Args:
                project_root: Project directory (npm or Cargo)
                package: Package name to explain
                ctx: MCP context for logging
                version: Only explain this installed version

            Returns:
                Dictionary with root-to-package paths (shortest first), a
                dev_only flag and a truncated flag.
            """
            return await self._run_tool(
                ctx,
                f"Tracing {package}",
                project_root,
                lambda s: s.why(package, version),
            )

        @self.mcp.tool()
        async def find_duplicates(
            project_root: str,
            ctx: Context[ServerSession, None],
        ) -> Dict[str, Any]:
            """Find packages installed at more than one version.

            Args:
                project_root: Project directory (npm or Cargo)
                ctx: MCP context for logging

            Returns:
                Dictionary with duplicate clusters (severity, consumers per
                version, suggested version) and totals.
            """
            return await self._run_tool(
                ctx, "Finding duplicates", project_root, lambda s: s.duplicates()
            )

        @self.mcp.tool()
        async def audit_vulnerabilities(
            project_root: str,
            ctx: Context[ServerSession, None],
            used_only: bool = False,
        ) -> Dict[str, Any]:
            """Match installed package versions against known advisories.

            Args:
                project_root: Project directory (npm or Cargo)
                ctx: MCP context for logging
                used_only: Only report packages the project's code imports

            Returns:
                Dictionary with findings ordered and grouped by severity, and
                the packages whose advisories could not be retrieved.
            """
            return await self._run_tool(
                ctx,
                "Auditing vulnerabilities",
                project_root,
                lambda s: s.audit(used_only=used_only),
            )

        @self.mcp.tool()
        async def list_deprecated(
            project_root: str,
            ctx: Context[ServerSession, None],
        ) -> Dict[str, Any]:
            """List installed package versions marked deprecated.

            Args:
                project_root: Project directory (npm or Cargo)
                ctx: MCP context for logging

            Returns:
                Dictionary with deprecated packages (name, version, used, note).
            """
            return await self._run_tool(
                ctx, "Listing deprecated packages", project_root, lambda s: s.deprecated()
            )

        logger.info(
            "MCP tools registered: analyze_dependencies, why_package, find_duplicates, "
            "audit_vulnerabilities, list_deprecated"
        )

    def run(self, transport: str = "stdio") -> None:
        """Run the MCP server.

        Args:
            transport: Transport type to use. Options:
                - "stdio": Standard input/output (default)
                - "streamable-http": HTTP transport
                - "sse": Server-sent events transport
        """
        logger.info(f"Starting MCP server with {transport} transport")
        self.mcp.run(transport=transport)  # type: ignore[arg-type]


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Returns:
        Parsed arguments namespace.
    """
    parser = argparse.ArgumentParser(
        description="deptrace MCP Server: dependency usage, chains, duplicates and advisories",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--transport",
        type=str,
        choices=["stdio", "streamable-http", "sse"],
        default="stdio",
        help="Transport type for MCP server. Default: stdio",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Configuration file applied to every project. Default: each project's .deptrace.yml",
    )
    parser.add_argument(
        "--log-dir",
        type=Path,
        default=None,
        help="Directory for structured log files. Default: ./.deptrace_logs",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Minimum level written to the log file and stderr. Default: INFO",
    )
    return parser.parse_args(argv)


def main() -> None:
    """Main entry point for MCP server."""
    args = parse_args()

    setup_logging(log_dir=args.log_dir, log_level=args.log_level)

    config = Config(args.config) if args.config is not None else None
    server = DependencyAuditMCPServer(config=config)
    server.run(transport=args.transport)


if __name__ == "__main__":
    main()
