"""Filesystem watcher producing a typed stream of change events."""

import asyncio
import enum
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from pathlib import Path

from watchfiles import Change, awatch


class ChangeKind(enum.Enum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"

    @classmethod
    def from_change(cls, change: Change) -> "ChangeKind":
        return {
            Change.added: cls.ADDED,
            Change.modified: cls.MODIFIED,
            Change.deleted: cls.DELETED,
        }[change]


@dataclass(frozen=True)
class ChangeEvent:
    """One filesystem change: what happened to which absolute path."""

    path: Path
    kind: ChangeKind


async def watch_changes(
    paths: list[Path],
    should_ignore: Callable[[Path], bool],
    stop_event: asyncio.Event | None = None,
    stability_ms: int = 500,
) -> AsyncIterator[ChangeEvent]:
    """Yields change events under ``paths`` until ``stop_event`` is set.

    Args:
        paths (list[Path]): Directories (or single files) to watch.
        should_ignore (Callable[[Path], bool]): Paths for which this returns
            True are dropped before they are yielded.
        stop_event (asyncio.Event | None, optional): Ends the stream when set.
        stability_ms (int, optional): Window in which bursts are grouped.

    Yields:
        ChangeEvent: Events of one batch in path order.
    """

    def watch_filter(_change: Change, raw_path: str) -> bool:
        return not should_ignore(Path(raw_path))

    async for changes in awatch(
        *paths,
        watch_filter=watch_filter,
        stop_event=stop_event,
        debounce=stability_ms,
    ):
        for change, raw_path in sorted(changes, key=lambda c: c[1]):
            yield ChangeEvent(Path(raw_path), ChangeKind.from_change(change))
