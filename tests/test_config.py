from __future__ import annotations

from pathlib import Path

import pytest

from tracer.config import (
    find_state_dir,
    load_config,
    resolve_actor,
    resolve_db_path,
    resolve_snapshot_path,
)


def test_db_path_prefers_flag_then_env(tmp_path: Path) -> None:
    env = {"TRACER_DB": str(tmp_path / "env.db")}

    assert resolve_db_path("flag.db", environ=env) == Path("flag.db")
    assert resolve_db_path(None, environ=env) == tmp_path / "env.db"


def test_db_path_finds_nearest_state_dir(tmp_path: Path) -> None:
    state = tmp_path / ".tracer"
    state.mkdir()
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)

    assert find_state_dir(nested) == state.resolve()
    assert resolve_db_path(cwd=nested, environ={}) == state.resolve() / "tracer.db"

    (state / "custom.db").write_bytes(b"")
    assert resolve_db_path(cwd=nested, environ={}) == state.resolve() / "custom.db"


def test_db_path_falls_back_to_home(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    home = tmp_path / "home"
    monkeypatch.setattr(Path, "home", classmethod(lambda cls: home))
    work = tmp_path / "work"
    work.mkdir()

    assert resolve_db_path(cwd=work, environ={}) == home / ".tracer" / "default.db"


def test_snapshot_path_uses_existing_jsonl(tmp_path: Path) -> None:
    db = tmp_path / "tracer.db"
    assert resolve_snapshot_path(db) == tmp_path / "issues.jsonl"

    (tmp_path / "beads.jsonl").write_text("", encoding="utf-8")
    assert resolve_snapshot_path(db) == tmp_path / "beads.jsonl"


def test_actor_resolution_order() -> None:
    assert resolve_actor("flag", environ={"TRACER_ACTOR": "env"}) == "flag"
    assert resolve_actor(None, environ={"TRACER_ACTOR": "env", "USER": "u"}) == "env"
    assert resolve_actor(None, environ={"USER": "u", "USERNAME": "w"}) == "u"
    assert resolve_actor(None, environ={"USERNAME": "w"}) == "w"
    assert resolve_actor(None, environ={}) == "unknown"


def test_load_config_reads_tracer_table(tmp_path: Path) -> None:
    (tmp_path / "config.toml").write_text(
        '[tracer]\nactor = "robot"\noutput = "Plain"\n', encoding="utf-8"
    )

    config = load_config(tmp_path)

    assert config.error is None
    assert config.actor == "robot"
    assert config.output == "plain"
    assert resolve_actor(None, file_config=config, environ={"USER": "u"}) == "robot"


def test_load_config_missing_file_is_empty(tmp_path: Path) -> None:
    config = load_config(tmp_path)

    assert config.error is None
    assert config.actor is None
    assert load_config(None).path is None


@pytest.mark.parametrize(
    ("body", "message"),
    [
        ("[tracer\n", "invalid TOML"),
        ('[tracer]\noutput = "fancy"\n', "[tracer].output must be one of"),
        ("[tracer]\nactor = 3\n", "[tracer].actor must be a non-empty string"),
        ('tracer = "flat"\n', "[tracer] must be a table"),
    ],
)
def test_load_config_reports_errors(tmp_path: Path, body: str, message: str) -> None:
    (tmp_path / "config.toml").write_text(body, encoding="utf-8")

    config = load_config(tmp_path)

    assert config.error is not None
    assert message in config.error
