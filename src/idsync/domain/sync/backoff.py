"""Retry scheduling for failed exports."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from idsync.config.export import DEFAULT_RETRY_BASE_MINUTES, DEFAULT_RETRY_MAX_MINUTES

if TYPE_CHECKING:
    from datetime import datetime

    from idsync.config.export import ExportConfig


@dataclass(frozen=True, slots=True)
class RetryBackoff:
    """Exponential backoff: ``base ** error_count`` minutes, capped.

    With the defaults a first failure waits 2 minutes, then 4, 8, 16, 32 and
    never more than an hour.
    """

    base_minutes: int = DEFAULT_RETRY_BASE_MINUTES
    max_minutes: int = DEFAULT_RETRY_MAX_MINUTES

    @classmethod
    def from_config(cls, config: ExportConfig) -> RetryBackoff:
        return cls(base_minutes=config.retry_base_minutes, max_minutes=config.retry_max_minutes)

    def delay(self, error_count: int) -> timedelta:
        exponent = max(error_count, 1)
        minutes = min(self.base_minutes**exponent, self.max_minutes)
        return timedelta(minutes=minutes)

    def next_retry_at(self, now: datetime, error_count: int) -> datetime:
        """When to retry after the ``error_count``-th consecutive failure."""

        return now + self.delay(error_count)
