"""Declarative engine configuration stored as JSON documents."""

from __future__ import annotations

from .loader import apply_engine_config, load_engine_config, parse_engine_config
from .schema import (
    ConnectedSystemDocument,
    EngineConfigDocument,
    MetaverseObjectTypeDocument,
    SyncRuleDocument,
)
from .translator import (
    EngineConfiguration,
    from_connected_system,
    from_metaverse_type,
    from_sync_rule,
    to_connected_system,
    to_metaverse_type,
    to_sync_rule,
    translate_config,
)

__all__ = [
    "ConnectedSystemDocument",
    "EngineConfigDocument",
    "EngineConfiguration",
    "MetaverseObjectTypeDocument",
    "SyncRuleDocument",
    "apply_engine_config",
    "from_connected_system",
    "from_metaverse_type",
    "from_sync_rule",
    "load_engine_config",
    "parse_engine_config",
    "to_connected_system",
    "to_metaverse_type",
    "to_sync_rule",
    "translate_config",
]
