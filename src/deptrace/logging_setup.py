# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Structured logging for deptrace.

Log files hold one JSON object per line. Records about a project carry its
"project_root" and, once the lockfile is loaded, its "ecosystem" as top-level
fields, so one log directory can be filtered per project:

    log = ProjectLogAdapter.for_project(logger, project_root)
    log = log.bind(ecosystem="cargo")
    log.info("Loaded 212 packages")
"""

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, MutableMapping, Optional, Tuple, Union

DEFAULT_LOG_DIRNAME = ".deptrace_logs"
CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Keys a record may not overwrite through extra_fields
RESERVED_FIELDS = frozenset({"timestamp", "level", "logger", "message", "exception"})


class StructuredFormatter(logging.Formatter):
    """Formats records as single-line JSON with any extra_fields merged in."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc)
            .isoformat()
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        fields = getattr(record, "extra_fields", None) or {}
        for key, value in fields.items():
            if key not in RESERVED_FIELDS:
                entry[key] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ProjectLogAdapter(logging.LoggerAdapter):
    """Logger adapter that tags every record with project fields.

    Fields given per call through extra={"extra_fields": {...}} are merged
    over the bound ones.
    """

    @classmethod
    def for_project(
        cls,
        logger: logging.Logger,
        project_root: Union[str, Path],
        ecosystem: Optional[str] = None,
    ) -> "ProjectLogAdapter":
        fields: Dict[str, Any] = {"project_root": str(project_root)}
        if ecosystem is not None:
            fields["ecosystem"] = ecosystem
        return cls(logger, fields)

    def bind(self, **fields: Any) -> "ProjectLogAdapter":
        """Return a new adapter with additional bound fields."""
        return ProjectLogAdapter(self.logger, {**self.fields, **fields})

    @property
    def fields(self) -> Dict[str, Any]:
        return dict(self.extra or {})

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> Tuple[Any, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        extra["extra_fields"] = {**self.fields, **extra.get("extra_fields", {})}
        kwargs["extra"] = extra
        return msg, kwargs


def setup_logging(
    log_dir: Optional[Path] = None,
    log_level: Union[int, str] = logging.INFO,
    console_output: bool = True,
) -> Path:
    """Configure the root logger with a JSON file handler.

    Replaces any handlers already installed, so calling it twice does not
    duplicate output. The console handler writes to stderr, which keeps
    stdout free for a stdio MCP transport.

    Args:
        log_dir: Directory for log files (default: ./.deptrace_logs)
        log_level: Level as a number or a name such as "DEBUG"
        console_output: Also log human-readable lines to stderr

    Returns:
        Path of the log file.

    Raises:
        ValueError: If log_level is an unknown level name.
    """
    level = _resolve_level(log_level)
    log_dir = log_dir if log_dir is not None else Path.cwd() / DEFAULT_LOG_DIRNAME
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / f"deptrace_{datetime.now(timezone.utc).strftime('%Y%m%d')}.log"

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(StructuredFormatter())
    root_logger.addHandler(file_handler)

    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, "%Y-%m-%d %H:%M:%S"))
        root_logger.addHandler(console_handler)

    logging.getLogger(__name__).info(
        f"Logging to {log_file}",
        extra={"extra_fields": {"log_level": logging.getLevelName(level)}},
    )
    return log_file


def _resolve_level(log_level: Union[int, str]) -> int:
    if isinstance(log_level, int):
        return log_level
    level = logging.getLevelName(log_level.strip().upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level!r}")
    return level
