"""YAML-driven configuration and environment settings."""

from .loader import ConfigLoader, load_sources, load_config_file, substitute_env_vars
from .settings import Settings, get_settings

__all__ = [
    "ConfigLoader",
    "load_sources",
    "load_config_file",
    "substitute_env_vars",
    "Settings",
    "get_settings",
]
