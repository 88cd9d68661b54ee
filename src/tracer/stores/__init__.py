from __future__ import annotations

from .base import DEFAULT_TREE_DEPTH, Storage
from .schema import init_schema, migrate_schema
from .sqlite import SqliteStore

__all__ = [
    "DEFAULT_TREE_DEPTH",
    "SqliteStore",
    "Storage",
    "init_schema",
    "migrate_schema",
]
