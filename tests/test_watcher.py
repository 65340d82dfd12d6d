from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest
from watchfiles import Change

from gitea_autosync.watcher import ChangeEvent, ChangeKind, watch_changes


def test_change_kind_from_change() -> None:
    assert ChangeKind.from_change(Change.added) is ChangeKind.ADDED
    assert ChangeKind.from_change(Change.modified) is ChangeKind.MODIFIED
    assert ChangeKind.from_change(Change.deleted) is ChangeKind.DELETED


@pytest.mark.asyncio
async def test_watch_changes_filters_and_orders_batches(
    mocker: MagicMock, tmp_path: Path
) -> None:
    """Verifies ignored paths are filtered and each batch is yielded in path order."""
    seen: dict[str, Any] = {}

    async def fake_awatch(*paths: Path, **kwargs: Any):
        seen["paths"] = paths
        seen.update(kwargs)
        keep = kwargs["watch_filter"]
        batch = {
            (Change.modified, str(tmp_path / "b.txt")),
            (Change.added, str(tmp_path / "a.txt")),
            (Change.added, str(tmp_path / "skip.log")),
        }
        yield {change for change in batch if keep(*change)}

    mocker.patch("gitea_autosync.watcher.awatch", fake_awatch)

    events = [
        event
        async for event in watch_changes(
            [tmp_path], lambda p: p.suffix == ".log", stability_ms=250
        )
    ]

    assert events == [
        ChangeEvent(tmp_path / "a.txt", ChangeKind.ADDED),
        ChangeEvent(tmp_path / "b.txt", ChangeKind.MODIFIED),
    ]
    assert seen["paths"] == (tmp_path,)
    assert seen["debounce"] == 250
    assert seen["stop_event"] is None
