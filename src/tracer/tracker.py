from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from .errors import ReconciliationError
from .stores.sqlite import SqliteStore
from .sync import auto_export, auto_import

logger = logging.getLogger(__name__)


@dataclass
class Tracker:
    """A store paired with its snapshot file.

    Typical use is open, ``sync_on_start``, run operations against
    ``store``, then ``sync_on_exit``.
    """

    store: SqliteStore
    snapshot_path: Path
    actor: str

    @classmethod
    def open(cls, db_path: Path | str, snapshot_path: Path, actor: str) -> Tracker:
        return cls(SqliteStore.open(db_path), Path(snapshot_path), actor)

    def sync_on_start(self) -> bool:
        return auto_import(self.store, self.snapshot_path, self.actor)

    def sync_on_exit(self) -> list[str]:
        """Export dirty issues; a failed export is logged and retried next run."""
        try:
            return auto_export(self.store, self.snapshot_path)
        except ReconciliationError as exc:
            logger.warning("auto-export to %s failed: %s", self.snapshot_path, exc)
            return []

    def close(self) -> None:
        self.store.close()

    def __enter__(self) -> Tracker:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
