"""Where idsync keeps its database."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Final

DEFAULT_DB_FILENAME: Final[str] = "idsync.db"


def data_dir() -> Path:
    """``IDSYNC_DATA_DIR``, else ``$XDG_DATA_HOME/idsync`` (``~/.local/share/idsync``)."""

    explicit = os.getenv("IDSYNC_DATA_DIR")
    if explicit:
        return Path(explicit).expanduser().resolve()
    xdg = os.getenv("XDG_DATA_HOME")
    base = Path(xdg) if xdg else Path.home() / ".local" / "share"
    return (base / "idsync").expanduser().resolve()


def get_database_uri() -> str:
    """``DATABASE_URI``, else a sqlite file in ``data_dir()`` (created on demand)."""

    env_uri = os.getenv("DATABASE_URI")
    if env_uri:
        return env_uri
    directory = data_dir()
    directory.mkdir(parents=True, exist_ok=True)
    return f"sqlite+pysqlite:///{directory / DEFAULT_DB_FILENAME}"
