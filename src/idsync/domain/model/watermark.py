"""Opaque import watermarks persisted between runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID


@dataclass(eq=False, kw_only=True)
class ImportWatermark:
    """Connector-owned pagination tokens and state, replayed on the next delta import."""

    connected_system_id: UUID
    pagination_tokens: list[str] = field(default_factory=list[str])
    persisted_connector_data: str | None = None
    last_full_import_at: datetime | None = None
    last_delta_import_at: datetime | None = None
    last_sync_at: datetime | None = None
