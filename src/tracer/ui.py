from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Sequence
from typing import Any, Literal

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

OUTPUT_CHOICES = ("auto", "plain", "rich")
OutputMode = Literal["plain", "rich"]

_PRIORITY_STYLES = {0: "bold red", 1: "red", 2: "yellow", 3: "green", 4: "dim"}
_STATUS_STYLES = {
    "open": "cyan",
    "in_progress": "yellow",
    "blocked": "red",
    "closed": "dim",
}


def add_output_mode_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--output",
        choices=OUTPUT_CHOICES,
        help="Output mode: auto (default), plain, or rich.",
    )


def add_json_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--json", action="store_true", help="Output JSON")


def _normalize_choice(raw: str | None, *, source: str) -> str | None:
    if raw is None:
        return None
    value = raw.strip().lower()
    if not value:
        return None
    if value not in OUTPUT_CHOICES:
        expected = ", ".join(OUTPUT_CHOICES)
        raise ValueError(f"invalid {source} value {raw!r}; expected one of: {expected}")
    return value


def _stream_is_tty(stream: object) -> bool:
    isatty = getattr(stream, "isatty", None)
    if not callable(isatty):
        return False
    try:
        return bool(isatty())
    except (OSError, ValueError):
        return False


def resolve_output_mode(
    requested: str | None = None,
    *,
    default: str | None = None,
    is_tty: bool | None = None,
) -> OutputMode:
    """Pick plain or rich output.

    ``requested`` comes from ``--output``; ``default`` from config.toml.
    ``auto`` means rich on a terminal and plain otherwise.
    """
    selected = _normalize_choice(requested, source="--output")
    if selected is None:
        selected = _normalize_choice(default, source="[tracer].output") or "auto"

    if selected == "auto":
        tty = _stream_is_tty(sys.stdout) if is_tty is None else bool(is_tty)
        return "rich" if tty else "plain"
    return "rich" if selected == "rich" else "plain"


def make_console(mode: OutputMode, *, stderr: bool = False) -> Console:
    return Console(
        file=sys.stderr if stderr else sys.stdout,
        force_terminal=mode == "rich",
        no_color=mode != "rich",
        highlight=False,
    )


def emit_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def style_status(status: str) -> str:
    style = _STATUS_STYLES.get(status)
    return f"[{style}]{status}[/{style}]" if style else status


def style_priority(priority: int) -> str:
    style = _PRIORITY_STYLES.get(priority)
    label = f"P{priority}"
    return f"[{style}]{label}[/{style}]" if style else label


def render_table(
    console: Console,
    *,
    headers: Sequence[str],
    rows: Sequence[Sequence[object]],
    title: str | None = None,
    no_wrap_columns: Sequence[int] = (),
) -> None:
    table = Table(title=title)
    no_wrap = set(no_wrap_columns)
    for idx, header in enumerate(headers):
        table.add_column(str(header), no_wrap=idx in no_wrap)
    for row in rows:
        table.add_row(*(str(value if value is not None else "") for value in row))
    console.print(table)


def render_panel(console: Console, body: str, *, title: str | None = None) -> None:
    console.print(Panel(body, title=title))


def render_tree(
    console: Console,
    nodes: Sequence[tuple[int, str]],
    *,
    title: str,
) -> None:
    """Print ``(depth, label)`` pairs given in pre-order as a rich tree."""
    root = Tree(title)
    parents: list[Tree] = [root]
    for depth, label in nodes:
        del parents[depth + 1 :]
        branch = parents[-1].add(label)
        parents.append(branch)
    console.print(root)
