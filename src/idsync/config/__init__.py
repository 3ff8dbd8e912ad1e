"""Application configuration helpers."""

from __future__ import annotations

from .env import int_from_env, require_env_vars
from .errors import ConfigurationError, MissingConfigurationError
from .export import ExportConfig, get_export_config
from .logging import configure_logging
from .storage import data_dir, get_database_uri

__all__ = [
    "ConfigurationError",
    "ExportConfig",
    "MissingConfigurationError",
    "configure_logging",
    "data_dir",
    "get_database_uri",
    "get_export_config",
    "int_from_env",
    "require_env_vars",
]
