"""
YAML configuration loader.

Loads sources, filter keywords and scoring weights from YAML files with:
- Environment variable substitution
- Required-field validation
- Default values
"""

import os
import re
from pathlib import Path
from typing import Optional

import yaml
import structlog

from scouted.core.models import SourceConfig
from scouted.exceptions import ConfigurationError

logger = structlog.get_logger(__name__)

CONFIG_DIR = Path(__file__).parent


def substitute_env_vars(text: str) -> str:
    """
    Substitute environment variables in text.

    Supports formats:
    - ${VAR_NAME} - required, empty string (and a warning) if missing
    - ${VAR_NAME:-default} - optional with default

    Args:
        text: Text with env var placeholders

    Returns:
        Text with substituted values
    """
    def replace(match):
        var_expr = match.group(1)
        if ":-" in var_expr:
            var_name, default = var_expr.split(":-", 1)
            return os.getenv(var_name, default)
        else:
            value = os.getenv(var_expr)
            if value is None:
                logger.warning("env_var_not_set", var=var_expr)
                return ""
            return value

    return re.sub(r"\$\{([^}]+)\}", replace, text)


class ConfigLoader:
    """
    Configuration loader for sources, filters and scoring.

    Loads YAML config files and validates against expected schema.
    """

    def __init__(self, config_dir: Optional[str] = None):
        """
        Initialize config loader.

        Args:
            config_dir: Directory containing config files
                       (defaults to package config directory)
        """
        self.config_dir = Path(config_dir) if config_dir else CONFIG_DIR

    def load_file(self, filename: str) -> dict:
        """
        Load YAML config file.

        Args:
            filename: Config file name (relative to config_dir)

        Returns:
            Parsed config dict

        Raises:
            ConfigurationError: If the file is missing or not valid YAML
        """
        filepath = self.config_dir / filename

        if not filepath.exists():
            raise ConfigurationError(f"Config file not found: {filepath}")

        logger.debug("loading_config", file=str(filepath))

        with open(filepath, "r", encoding="utf-8") as f:
            content = f.read()

        content = substitute_env_vars(content)

        try:
            config = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {filepath}: {e}") from e

        return config or {}

    def load_sources(self, filename: str = "sources.yml") -> list[SourceConfig]:
        """
        Load source definitions from YAML, in configured order.

        Invalid entries are logged and skipped.

        Args:
            filename: Sources config file name

        Returns:
            List of SourceConfig objects

        Raises:
            ConfigurationError: sources is not a list of mappings
        """
        config = self.load_file(filename)

        if not isinstance(config, dict):
            raise ConfigurationError(f"{filename} must be a mapping with a 'sources' list")
        entries = config.get("sources") or []
        if not isinstance(entries, list):
            raise ConfigurationError(f"'sources' in {filename} must be a list")

        sources = []
        for index, source_data in enumerate(entries):
            if not isinstance(source_data, dict):
                raise ConfigurationError(
                    f"Source entry {index} in {filename} must be a mapping, got: {source_data!r}"
                )
            try:
                source = self._parse_source(source_data)
                sources.append(source)
                logger.debug("source_loaded", source_id=source.source_id)
            except (KeyError, ValueError, TypeError) as e:
                logger.error(
                    "source_load_failed",
                    source=source_data.get("source_id", "unknown"),
                    error=str(e),
                )

        return sources

    def _parse_source(self, data: dict) -> SourceConfig:
        """
        Parse source definition into SourceConfig.

        Raises:
            ValueError: If required fields missing or policy unknown
        """
        required = ["source_id", "url", "extractor"]
        for field in required:
            if field not in data:
                raise ValueError(f"Missing required field: {field}")

        return SourceConfig.from_dict(data)


def load_config_file(config_path: Optional[str], default_filename: str) -> dict:
    """
    Load one YAML file, either from an explicit path or the package defaults.

    Args:
        config_path: Optional path to a YAML file
        default_filename: File name inside the package config directory

    Returns:
        Parsed config dict
    """
    if config_path:
        path = Path(config_path)
        return ConfigLoader(str(path.parent)).load_file(path.name)
    return ConfigLoader().load_file(default_filename)


def load_sources(config_path: Optional[str] = None) -> list[SourceConfig]:
    """
    Convenience function to load source configs.

    Args:
        config_path: Optional path to sources.yml

    Returns:
        List of SourceConfig objects
    """
    if config_path:
        path = Path(config_path)
        return ConfigLoader(str(path.parent)).load_sources(path.name)
    return ConfigLoader().load_sources()
