from __future__ import annotations

from datetime import timedelta

import pytest

from idsync.config import ConfigurationError, ExportConfig, get_export_config

_VARIABLES = (
    "IDSYNC_EXPORT_BATCH_SIZE",
    "IDSYNC_EXPORT_MAX_PARALLELISM",
    "IDSYNC_EXPORT_MAX_RETRIES",
    "IDSYNC_RETRY_BASE_MINUTES",
    "IDSYNC_RETRY_MAX_MINUTES",
)


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _VARIABLES:
        monkeypatch.delenv(name, raising=False)


def test_defaults_apply_without_environment() -> None:
    config = get_export_config()

    assert config == ExportConfig()
    assert config.batch_size == 100
    assert config.max_parallelism == 1
    assert config.max_retries == 5
    assert config.retry_cap == timedelta(hours=1)


def test_environment_overrides_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("IDSYNC_EXPORT_BATCH_SIZE", "25")
    monkeypatch.setenv("IDSYNC_EXPORT_MAX_PARALLELISM", "4")
    monkeypatch.setenv("IDSYNC_RETRY_MAX_MINUTES", "30")

    config = get_export_config()

    assert (config.batch_size, config.max_parallelism, config.retry_max_minutes) == (25, 4, 30)


def test_cap_below_base_delay_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("IDSYNC_RETRY_BASE_MINUTES", "10")
    monkeypatch.setenv("IDSYNC_RETRY_MAX_MINUTES", "5")

    with pytest.raises(ConfigurationError, match="IDSYNC_RETRY_MAX_MINUTES"):
        get_export_config()


def test_zero_batch_size_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("IDSYNC_EXPORT_BATCH_SIZE", "0")

    with pytest.raises(ConfigurationError, match="IDSYNC_EXPORT_BATCH_SIZE"):
        get_export_config()
