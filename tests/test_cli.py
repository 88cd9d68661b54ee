from __future__ import annotations

import json
from pathlib import Path

import pytest

from tracer import cli
from tracer.models import DependencyType
from tracer.stores.sqlite import SqliteStore


@pytest.fixture
def run(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
):
    monkeypatch.chdir(tmp_path)
    for name in ("TRACER_DB", "TRACER_ACTOR", "TRACER_DEBUG"):
        monkeypatch.delenv(name, raising=False)
    db = tmp_path / "work" / "tracer.db"

    def _run(*argv: str) -> str:
        cli.main(["--db", str(db), "--actor", "tester", *argv])
        return capsys.readouterr().out

    return _run


def _json(out: str):
    return json.loads(out)


def test_parse_dependency_spec() -> None:
    assert cli.parse_dependency_spec("bd-3") == (DependencyType.BLOCKS, "bd-3")
    assert cli.parse_dependency_spec("related:bd-4") == (DependencyType.RELATED, "bd-4")
    assert cli.parse_dependency_spec(" parent-child: bd-5 ") == (
        DependencyType.PARENT_CHILD,
        "bd-5",
    )


def test_create_list_and_show(run) -> None:
    assert run("create", "Write docs", "-p", "1", "-t", "feature").strip() == "bd-1"
    assert run("create", "Fix bug", "-t", "bug", "-l", "backend").strip() == "bd-2"

    listing = run("list")
    assert "ID" in listing and "STATUS" in listing
    assert listing.index("bd-1") < listing.index("bd-2")

    rows = _json(run("list", "--label", "backend", "--json"))
    assert [row["id"] for row in rows] == ["bd-2"]

    shown = _json(run("show", "bd-2", "--json"))
    assert shown["issue_type"] == "bug"
    assert shown["labels"] == ["backend"]
    assert [event["event_type"] for event in shown["events"]] == [
        "label_added",
        "created",
    ]

    plain = run("show", "bd-1")
    assert "Write docs" in plain
    assert "dependencies:" in plain


def test_ready_blocked_and_close(run) -> None:
    run("create", "Foundation")
    run("create", "Walls", "-p", "1", "--dep", "bd-1")

    assert [row["id"] for row in _json(run("ready", "--json"))] == ["bd-1"]
    blocked = _json(run("blocked", "--json"))
    assert [(row["id"], row["blocked_by"]) for row in blocked] == [("bd-2", ["bd-1"])]

    closed = _json(run("close", "bd-1", "-r", "done", "--json"))
    assert closed[0]["status"] == "closed"
    assert "closed_at" in closed[0]

    assert [row["id"] for row in _json(run("ready", "--json"))] == ["bd-2"]
    assert "(no blocked issues)" in run("blocked")

    reopened = _json(run("reopen", "bd-1", "--json"))
    assert reopened[0]["status"] == "open"
    assert "closed_at" not in reopened[0]


def test_update_patch_and_clear(run) -> None:
    run("create", "Task", "-a", "ana", "--estimate", "30")

    updated = _json(
        run("update", "bd-1", "--title", "Renamed", "-s", "in_progress", "-a", "", "--json")
    )

    assert updated["title"] == "Renamed"
    assert updated["status"] == "in_progress"
    assert "assignee" not in updated
    assert updated["estimated_minutes"] == 30


def test_errors_exit_with_status_one(run, capsys: pytest.CaptureFixture[str]) -> None:
    run("create", "Only")

    for argv, message in (
        (("show", "bd-9"), "error: issue not found: bd-9"),
        (("update", "bd-1"), "error: nothing to update"),
        (("delete", "bd-1"), "error: refusing to delete without --yes"),
        (("close", "bd-1", "bd-1"), "error: issue already closed: bd-1"),
        (("create", "Bad", "-p", "9"), "error: priority must be between 0 and 4"),
        (("dep", "add", "bd-1", "bd-404"), "error: issue not found: bd-404"),
    ):
        with pytest.raises(SystemExit) as raised:
            run(*argv)
        assert raised.value.code == 1
        assert message in capsys.readouterr().err


def test_snapshot_is_written_on_exit_and_deletes_propagate(run, tmp_path: Path) -> None:
    snapshot = tmp_path / "work" / "issues.jsonl"
    run("create", "Keep")
    run("create", "Drop")

    assert [json.loads(line)["id"] for line in snapshot.read_text().splitlines()] == [
        "bd-1",
        "bd-2",
    ]

    assert "deleted: bd-2" in run("delete", "bd-2", "--yes")
    assert [json.loads(line)["id"] for line in snapshot.read_text().splitlines()] == [
        "bd-1"
    ]


def test_failed_command_skips_export_and_keeps_dirty_set(run, tmp_path: Path) -> None:
    snapshot = tmp_path / "work" / "issues.jsonl"

    with pytest.raises(SystemExit) as raised:
        run("create", "Orphan", "--dep", "bd-99")
    assert raised.value.code == 1
    assert not snapshot.exists()

    with SqliteStore.open(tmp_path / "work" / "tracer.db") as store:
        assert store.get_dirty_issues() == ["bd-1"]

    run("create", "Next")
    assert [json.loads(line)["id"] for line in snapshot.read_text().splitlines()] == [
        "bd-1",
        "bd-2",
    ]


def test_export_and_import(run, tmp_path: Path) -> None:
    run("create", "Alpha")
    run("create", "Beta", "--dep", "related:bd-1")

    exported = [json.loads(line) for line in run("export").splitlines()]
    assert [row["id"] for row in exported] == ["bd-1", "bd-2"]
    assert exported[1]["dependencies"][0]["type"] == "related"

    incoming = tmp_path / "incoming.jsonl"
    incoming.write_text(
        json.dumps({"id": "bd-1", "title": "Alpha v2"})
        + "\n"
        + json.dumps({"id": "bd-7", "title": "Gamma"})
        + "\n",
        encoding="utf-8",
    )

    preview = _json(run("import", "-i", str(incoming), "--dry-run", "--json"))
    assert (preview["created"], preview["updated"]) == (1, 1)
    assert _json(run("show", "bd-1", "--json"))["title"] == "Alpha"

    result = _json(run("import", "-i", str(incoming), "--skip-existing", "--json"))
    assert (result["created"], result["skipped"]) == (1, 1)
    assert run("create", "Delta").strip() == "bd-8"


def test_dep_tree_cycles_labels_and_stats(run) -> None:
    run("create", "Root")
    run("create", "Child")
    run("create", "Grandchild")
    run("dep", "add", "bd-1", "bd-2")
    run("dep", "add", "bd-2", "parent-child:bd-3")

    tree = run("dep", "tree", "bd-1").splitlines()
    assert tree[0].startswith("bd-1 ")
    assert tree[1].startswith("  bd-2 ")
    assert tree[2].startswith("    bd-3 ")

    nodes = _json(run("dep", "tree", "bd-1", "--max-depth", "1", "--json"))
    assert [(node["id"], node["truncated"]) for node in nodes] == [
        ("bd-1", False),
        ("bd-2", True),
    ]

    assert "(no cycles)" in run("dep", "cycles")
    run("dep", "add", "bd-3", "related:bd-1")
    assert "bd-1 -> bd-2 -> bd-3 -> bd-1" in run("dep", "cycles")
    assert _json(run("dep", "remove", "bd-3", "bd-1", "--json")) == {"removed": True}

    run("label", "add", "bd-1", "infra")
    assert _json(run("label", "list", "bd-1", "--json")) == ["infra"]
    run("label", "remove", "bd-1", "infra")
    assert _json(run("label", "list", "bd-1", "--json")) == []

    stats = _json(run("stats", "--json"))
    assert stats["total_issues"] == 3
    assert stats["blocked_issues"] == 1
    assert "total: 3" in run("stats")


def test_config_get_set(run, capsys: pytest.CaptureFixture[str]) -> None:
    assert run("config", "set", "prefix", "web").strip() == "prefix = web"
    assert run("config", "get", "prefix").strip() == "web"
    assert run("create", "Prefixed").strip() == "web-1"

    with pytest.raises(SystemExit):
        run("config", "get", "missing")
    assert "config key not set: missing" in capsys.readouterr().err


def test_init_creates_workspace_used_by_later_commands(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    monkeypatch.chdir(tmp_path)
    for name in ("TRACER_DB", "TRACER_ACTOR", "TRACER_DEBUG"):
        monkeypatch.delenv(name, raising=False)

    cli.main(["init", "--prefix", "ops"])
    assert "prefix: ops" in capsys.readouterr().out
    assert (tmp_path / ".tracer" / "tracer.db").exists()

    (tmp_path / ".tracer" / "config.toml").write_text(
        '[tracer]\nactor = "robot"\n', encoding="utf-8"
    )
    cli.main(["create", "From workspace"])
    assert capsys.readouterr().out.strip() == "ops-1"

    cli.main(["show", "ops-1", "--json"])
    shown = json.loads(capsys.readouterr().out)
    assert shown["events"][0]["actor"] == "robot"
    assert (tmp_path / ".tracer" / "issues.jsonl").exists()


def test_invalid_config_file_is_reported(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("TRACER_DB", raising=False)
    state = tmp_path / ".tracer"
    state.mkdir()
    (state / "config.toml").write_text("[tracer\n", encoding="utf-8")

    with pytest.raises(SystemExit) as raised:
        cli.main(["list"])

    assert raised.value.code == 1
    assert "invalid TOML" in capsys.readouterr().err
