"""Workspace settings: where the database and snapshot live, who is acting.

Only the command line consults this module; the store and sync layers take
paths and the actor as explicit arguments.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import tomllib

STATE_DIR_NAME = ".tracer"
CONFIG_FILE_NAME = "config.toml"
DEFAULT_DB_NAME = "tracer.db"
DEFAULT_SNAPSHOT_NAME = "issues.jsonl"
OUTPUT_MODES = ("auto", "plain", "rich")


class ConfigValidationError(ValueError):
    pass


@dataclass(frozen=True)
class TracerFileConfig:
    path: Path | None = None
    actor: str | None = None
    output: str | None = None
    error: str | None = None


def _as_str(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    if not stripped:
        return None
    return stripped


def find_state_dir(cwd: Path | None = None) -> Path | None:
    """Return the nearest existing ``.tracer`` directory from *cwd* upward."""
    start = (cwd or Path.cwd()).resolve()
    for base in (start, *start.parents):
        candidate = base / STATE_DIR_NAME
        if candidate.is_dir():
            return candidate
    return None


def resolve_db_path(
    explicit: str | Path | None = None,
    *,
    cwd: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> Path:
    """Resolve the database location.

    Resolution order:
    1. explicit ``--db`` value
    2. TRACER_DB
    3. first ``*.db`` in the nearest .tracer directory (or its default name)
    4. ~/.tracer/default.db
    """
    env = os.environ if environ is None else environ
    if explicit:
        return Path(explicit).expanduser()

    raw = env.get("TRACER_DB", "").strip()
    if raw:
        return Path(raw).expanduser()

    state_dir = find_state_dir(cwd)
    if state_dir is not None:
        candidates = sorted(state_dir.glob("*.db"))
        return candidates[0] if candidates else state_dir / DEFAULT_DB_NAME

    return Path.home() / STATE_DIR_NAME / "default.db"


def resolve_snapshot_path(db_path: Path) -> Path:
    """The snapshot sits beside the database: first ``*.jsonl`` or issues.jsonl."""
    candidates = sorted(db_path.parent.glob("*.jsonl"))
    if candidates:
        return candidates[0]
    return db_path.parent / DEFAULT_SNAPSHOT_NAME


def resolve_actor(
    explicit: str | None = None,
    *,
    file_config: TracerFileConfig | None = None,
    environ: Mapping[str, str] | None = None,
) -> str:
    env = os.environ if environ is None else environ
    for candidate in (
        explicit,
        env.get("TRACER_ACTOR"),
        file_config.actor if file_config is not None else None,
        env.get("USER"),
        env.get("USERNAME"),
    ):
        text = _as_str(candidate)
        if text:
            return text
    return "unknown"


def _parse_tracer_table(raw: object) -> tuple[str | None, str | None]:
    if raw is None:
        return None, None
    if not isinstance(raw, dict):
        raise ConfigValidationError("[tracer] must be a table")

    actor = raw.get("actor")
    if actor is not None and _as_str(actor) is None:
        raise ConfigValidationError("[tracer].actor must be a non-empty string")

    output = raw.get("output")
    if output is not None:
        text = _as_str(output)
        if text is None or text.lower() not in OUTPUT_MODES:
            raise ConfigValidationError(
                f"[tracer].output must be one of: {', '.join(OUTPUT_MODES)}"
            )
        output = text.lower()

    return _as_str(actor), output


def load_config(state_dir: Path | None) -> TracerFileConfig:
    """Read ``<state_dir>/config.toml``; a missing file is not an error."""
    if state_dir is None:
        return TracerFileConfig()
    path = state_dir / CONFIG_FILE_NAME
    if not path.exists():
        return TracerFileConfig(path=path)

    raw: dict[str, Any]
    try:
        raw = tomllib.loads(path.read_text(encoding="utf-8"))
    except (OSError, tomllib.TOMLDecodeError) as exc:
        return TracerFileConfig(path=path, error=f"invalid TOML in {path}: {exc}")

    try:
        actor, output = _parse_tracer_table(raw.get("tracer"))
    except ConfigValidationError as exc:
        return TracerFileConfig(path=path, error=f"{path}: {exc}")

    return TracerFileConfig(path=path, actor=actor, output=output)
