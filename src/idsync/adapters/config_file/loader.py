"""Load the declarative engine configuration from a JSON file."""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING

from pydantic import ValidationError

from idsync.config.errors import ConfigurationError

from .schema import EngineConfigDocument
from .translator import EngineConfiguration, translate_config

if TYPE_CHECKING:
    from pathlib import Path

    from idsync.domain.ports import SyncUnitOfWork

log = getLogger(__name__)


def parse_engine_config(payload: str | bytes, *, source: str = "<string>") -> EngineConfiguration:
    """Validate a JSON configuration document; invalid input raises ``ConfigurationError``."""

    try:
        document = EngineConfigDocument.model_validate_json(payload)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration in {source}:\n{exc}") from exc
    return translate_config(document)


def load_engine_config(path: Path) -> EngineConfiguration:
    try:
        payload = path.read_bytes()
    except OSError as exc:
        raise ConfigurationError(f"Cannot read configuration file {path}: {exc}") from exc
    config = parse_engine_config(payload, source=str(path))
    log.info(
        "Loaded %d connected system(s), %d metaverse type(s), %d sync rule(s) from %s",
        len(config.connected_systems),
        len(config.metaverse_types),
        len(config.sync_rules),
        path,
    )
    return config


def apply_engine_config(uow: SyncUnitOfWork, config: EngineConfiguration) -> None:
    """Store every definition of ``config``, replacing stored ones with the same id."""

    repositories = uow.repositories
    for system in config.connected_systems:
        repositories.connected_systems.add(system)
    for definition in config.metaverse_types:
        repositories.metaverse_types.add(definition)
    for rule in config.sync_rules:
        repositories.sync_rules.add(rule)
