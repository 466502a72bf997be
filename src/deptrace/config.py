# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Configuration loading and validation for deptrace."""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".deptrace.yml"


class ConfigurationError(Exception):
    """Raised when configuration validation fails critically."""

    pass


class Config:
    """Configuration for deptrace analyses.

    Loads configuration from .deptrace.yml with validation and defaults. A
    missing, empty or unparseable file never fails: defaults are used and the
    problem is logged.
    """

    DEFAULTS: Dict[str, Any] = {
        "include_dev": True,
        "strict_ingestion": True,
        "scan_workers": 8,
        "lookup_workers": 4,
        "lookup_timeout_seconds": 10.0,
        "max_file_size_kb": 1024,
        "ignore_patterns": [],
        "source_extensions": [".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs", ".mts", ".cts"],
        "dev_tool_patterns": [],
        "why_max_paths": 50,
        "why_max_expansions": 100000,
        "advisory_database": "",
        "latest_versions": {},
    }

    POSITIVE_INT_KEYS = (
        "scan_workers",
        "lookup_workers",
        "max_file_size_kb",
        "why_max_paths",
        "why_max_expansions",
    )
    STRING_LIST_KEYS = ("ignore_patterns", "source_extensions", "dev_tool_patterns")

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize configuration.

        Args:
            config_path: Path to configuration file. If None, uses .deptrace.yml
                in the current directory.
        """
        if config_path is None:
            config_path = Path.cwd() / CONFIG_FILENAME

        self.config_path = config_path
        self._config: Dict[str, Any] = {}
        self._load_config()

    @classmethod
    def for_project(cls, project_root: Path) -> "Config":
        """Load .deptrace.yml from a project root."""
        return cls(Path(project_root) / CONFIG_FILENAME)

    @classmethod
    def from_dict(cls, values: Dict[str, Any]) -> "Config":
        """Build a configuration from a mapping instead of a file.

        Raises:
            ConfigurationError: If any key is unknown or any value is invalid.
        """
        config = cls.__new__(cls)
        config.config_path = None
        config._config = cls._defaults()
        for key, value in values.items():
            if key not in cls.DEFAULTS:
                raise ConfigurationError(f"Unknown configuration parameter '{key}'")
            if not config._validate_parameter(key, value):
                raise ConfigurationError(f"Invalid value for '{key}': {value!r}")
            config._config[key] = value
        return config

    @classmethod
    def _defaults(cls) -> Dict[str, Any]:
        # Copy mutable defaults so instances never share lists/dicts
        return {
            key: (value.copy() if isinstance(value, (list, dict)) else value)
            for key, value in cls.DEFAULTS.items()
        }

    def _load_config(self) -> None:
        """Load and validate configuration from file."""
        if not self.config_path.exists():
            logger.info(f"Configuration file not found at {self.config_path}, using defaults")
            self._config = self._defaults()
            return

        try:
            with open(self.config_path, encoding="utf-8") as f:
                loaded_config = yaml.safe_load(f)

            if loaded_config is None:
                logger.warning("Configuration file is empty, using defaults")
                self._config = self._defaults()
                return

            if not isinstance(loaded_config, dict):
                logger.warning(
                    f"Configuration file must contain a YAML dictionary, "
                    f"got {type(loaded_config)}, using defaults"
                )
                self._config = self._defaults()
                return

            # Start with defaults and override with loaded values
            self._config = self._defaults()
            self._validate_and_merge(loaded_config)

        except yaml.YAMLError as e:
            logger.warning(
                f"Error parsing configuration file {self.config_path}: {e}, using defaults"
            )
            self._config = self._defaults()
        except OSError as e:
            logger.warning(
                f"Cannot read configuration file {self.config_path}: {e}, using defaults"
            )
            self._config = self._defaults()

    def _validate_and_merge(self, loaded_config: Dict[str, Any]) -> None:
        """Validate loaded configuration and merge with defaults.

        Invalid parameters are logged as warnings and defaults are used.
        """
        for key, value in loaded_config.items():
            if key not in self.DEFAULTS:
                logger.warning(f"Unknown configuration parameter '{key}', ignoring")
                continue

            if not self._validate_parameter(key, value):
                logger.warning(
                    f"Invalid value for '{key}': {value}, using default {self.DEFAULTS[key]}"
                )
                continue

            self._config[key] = value

    def _validate_parameter(self, key: str, value: Any) -> bool:
        """Validate a configuration parameter.

        Returns:
            True if valid, False if invalid
        """
        if key == "lookup_timeout_seconds":
            # YAML gives an int for "10" and a float for "10.5"; bool is not a number here
            return isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0

        # Type validation
        expected_type = type(self.DEFAULTS[key])
        if not isinstance(value, expected_type):
            return False
        if expected_type is int and isinstance(value, bool):
            return False

        # Range validation for numeric parameters
        if key in self.POSITIVE_INT_KEYS:
            return value > 0
        elif key in self.STRING_LIST_KEYS:
            return all(isinstance(item, str) and item for item in value)
        elif key == "latest_versions":
            # Package name -> latest available version
            return all(
                isinstance(name, str) and isinstance(version, str)
                for name, version in value.items()
            )

        return True

    def to_dict(self) -> Dict[str, Any]:
        """Effective configuration values."""
        return dict(self._config)

    # Property accessors for all configuration values
    @property
    def include_dev(self) -> bool:
        """Whether dev-only declarations count as declared dependencies."""
        value = self._config["include_dev"]
        assert isinstance(value, bool)
        return value

    @property
    def strict_ingestion(self) -> bool:
        """Whether a malformed lockfile record aborts ingestion."""
        value = self._config["strict_ingestion"]
        assert isinstance(value, bool)
        return value

    @property
    def scan_workers(self) -> int:
        """Maximum source files scanned concurrently."""
        value = self._config["scan_workers"]
        assert isinstance(value, int)
        return value

    @property
    def lookup_workers(self) -> int:
        """Maximum concurrent advisory lookups."""
        value = self._config["lookup_workers"]
        assert isinstance(value, int)
        return value

    @property
    def lookup_timeout_seconds(self) -> float:
        """Time allowed for one advisory lookup."""
        value = self._config["lookup_timeout_seconds"]
        assert isinstance(value, (int, float))
        return float(value)

    @property
    def max_file_size_kb(self) -> int:
        """Source files larger than this are not scanned."""
        value = self._config["max_file_size_kb"]
        assert isinstance(value, int)
        return value

    @property
    def ignore_patterns(self) -> List[str]:
        """Additional source path patterns to skip."""
        value = self._config["ignore_patterns"]
        assert isinstance(value, list)
        return value

    @property
    def source_extensions(self) -> List[str]:
        """Source file extensions to scan."""
        value = self._config["source_extensions"]
        assert isinstance(value, list)
        return value

    @property
    def dev_tool_patterns(self) -> List[str]:
        """Extra package name patterns treated as dev tools."""
        value = self._config["dev_tool_patterns"]
        assert isinstance(value, list)
        return value

    @property
    def why_max_paths(self) -> int:
        """Maximum paths returned by a why query."""
        value = self._config["why_max_paths"]
        assert isinstance(value, int)
        return value

    @property
    def why_max_expansions(self) -> int:
        """Maximum back-references followed by a why query."""
        value = self._config["why_max_expansions"]
        assert isinstance(value, int)
        return value

    @property
    def advisory_database(self) -> Optional[Path]:
        """Local advisory database file, relative to the project root, or None."""
        value = self._config["advisory_database"]
        assert isinstance(value, str)
        return Path(value) if value else None

    @property
    def latest_versions(self) -> Dict[str, str]:
        """Latest available versions used as duplicate convergence targets.

        Example: {"windows-sys": "0.59.0"}
        """
        value = self._config["latest_versions"]
        assert isinstance(value, dict)
        return value
