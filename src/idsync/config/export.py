"""Export pipeline defaults and environment overrides."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from .env import int_from_env
from .errors import ConfigurationError

DEFAULT_EXPORT_BATCH_SIZE = 100
DEFAULT_EXPORT_MAX_PARALLELISM = 1
DEFAULT_EXPORT_MAX_RETRIES = 5
DEFAULT_RETRY_BASE_MINUTES = 2
DEFAULT_RETRY_MAX_MINUTES = 60


@dataclass(frozen=True, slots=True)
class ExportConfig:
    batch_size: int = DEFAULT_EXPORT_BATCH_SIZE
    max_parallelism: int = DEFAULT_EXPORT_MAX_PARALLELISM
    max_retries: int = DEFAULT_EXPORT_MAX_RETRIES
    retry_base_minutes: int = DEFAULT_RETRY_BASE_MINUTES
    retry_max_minutes: int = DEFAULT_RETRY_MAX_MINUTES

    @property
    def retry_cap(self) -> timedelta:
        return timedelta(minutes=self.retry_max_minutes)


def get_export_config() -> ExportConfig:
    config = ExportConfig(
        batch_size=int_from_env("IDSYNC_EXPORT_BATCH_SIZE", DEFAULT_EXPORT_BATCH_SIZE, minimum=1),
        max_parallelism=int_from_env(
            "IDSYNC_EXPORT_MAX_PARALLELISM", DEFAULT_EXPORT_MAX_PARALLELISM, minimum=1
        ),
        max_retries=int_from_env(
            "IDSYNC_EXPORT_MAX_RETRIES", DEFAULT_EXPORT_MAX_RETRIES, minimum=1
        ),
        retry_base_minutes=int_from_env(
            "IDSYNC_RETRY_BASE_MINUTES", DEFAULT_RETRY_BASE_MINUTES, minimum=1
        ),
        retry_max_minutes=int_from_env(
            "IDSYNC_RETRY_MAX_MINUTES", DEFAULT_RETRY_MAX_MINUTES, minimum=1
        ),
    )
    if config.retry_max_minutes < config.retry_base_minutes:
        raise ConfigurationError("IDSYNC_RETRY_MAX_MINUTES must not be below the base delay")
    return config
