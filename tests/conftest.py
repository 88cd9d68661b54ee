from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Any

import pytest

from tracer.models import Issue
from tracer.stores.sqlite import SqliteStore

ACTOR = "tester"


@pytest.fixture
def store() -> Iterator[SqliteStore]:
    with SqliteStore.open(":memory:") as mem:
        yield mem


@pytest.fixture
def create(store: SqliteStore) -> Callable[..., Issue]:
    """Create an issue in the in-memory store; ``id`` defaults to allocated."""

    def _create(title: str, **fields: Any) -> Issue:
        issue_id = str(fields.pop("id", ""))
        return store.create_issue(Issue(id=issue_id, title=title, **fields), ACTOR)

    return _create
