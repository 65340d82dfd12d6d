"""Routing of filesystem events into quick syncs and debounced full syncs.

Everything here runs on one asyncio loop. Git work for a project always goes
through that project's lock, so a quick sync and a full sync never touch the
same working tree at the same time.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .constants import APP_NAME, EXCLUDE_FILE
from .discovery import resolve_project
from .exceptions import SyncError
from .ignore import IgnoreResolver
from .watcher import ChangeEvent

logger = logging.getLogger(APP_NAME)

SyncFn = Callable[[Path], Awaitable[Any]]
QuickSyncFn = Callable[[Path, Path], Awaitable[Any]]
DiscoverFn = Callable[[], list[Path]]


@dataclass
class SchedulerState:
    """Mutable scheduling state, changed only through its transition methods.

    Attributes:
        pending (dict[Path, None]): Insertion-ordered set of projects awaiting
            a debounced full sync.
        draining (bool): A drain loop is running.
        sweeping (bool): A full discovery sweep is running.
        timer (asyncio.TimerHandle | None): The shared debounce timer.
    """

    pending: dict[Path, None] = field(default_factory=dict)
    draining: bool = False
    sweeping: bool = False
    timer: asyncio.TimerHandle | None = None

    def mark_pending(self, project: Path) -> bool:
        """Adds a project; returns False if it was already pending."""
        if project in self.pending:
            return False
        self.pending[project] = None
        return True

    def take_pending(self) -> list[Path]:
        """Empties the pending set and returns its former contents."""
        projects = list(self.pending)
        self.pending.clear()
        return projects

    def rearm(self, handle: asyncio.TimerHandle) -> None:
        if self.timer is not None:
            self.timer.cancel()
        self.timer = handle

    def disarm(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
        self.timer = None

    def try_begin_drain(self) -> bool:
        if self.draining:
            return False
        self.draining = True
        return True

    def end_drain(self) -> None:
        self.draining = False

    def try_begin_full_sync(self) -> bool:
        if self.sweeping:
            return False
        self.sweeping = True
        return True

    def end_full_sync(self) -> None:
        self.sweeping = False


class Scheduler:
    """Turns change events into serialized quick syncs and batched full syncs.

    Attributes:
        roots (list[Path]): Project roots used to route events.
        ignore (IgnoreResolver): Exclusion rules.
        debounce (float): Seconds of quiet before pending projects drain.
        quick_sync_enabled (bool): Whether single-path commits are made.
        resync_on_ignore_change (bool): Whether a .gitignore edit marks the
            project pending.
        patterns_file (Path | None): External pattern file; editing it
            reloads the rules and triggers a sweep.
        state (SchedulerState): Pending set, guards and timer.
    """

    def __init__(
        self,
        roots: list[Path],
        ignore: IgnoreResolver,
        sync: SyncFn,
        quick_sync: QuickSyncFn,
        discover: DiscoverFn,
        debounce: float = 3.0,
        quick_sync_enabled: bool = True,
        resync_on_ignore_change: bool = False,
        patterns_file: Path | None = None,
    ):
        self.roots = list(roots)
        self.ignore = ignore
        self.debounce = debounce
        self.quick_sync_enabled = quick_sync_enabled
        self.resync_on_ignore_change = resync_on_ignore_change
        self.patterns_file = patterns_file
        self.state = SchedulerState()

        self._sync = sync
        self._quick_sync = quick_sync
        self._discover = discover
        self._locks: dict[Path, asyncio.Lock] = {}
        self._quick_queue: asyncio.Queue[tuple[Path, Path]] = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self._sweep_task: asyncio.Task | None = None
        self._drain_task: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()

    def start(self) -> None:
        """Launches the quick-sync consumer."""
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._quick_worker())

    async def stop(self) -> None:
        """Cancels the timer and every background task."""
        self.state.disarm()
        tasks = [t for t in (self._worker, self._sweep_task, self._drain_task) if t]
        tasks.extend(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._worker = None

    async def join(self) -> None:
        """Waits until queued quick syncs and a running drain have finished."""
        await self._quick_queue.join()
        if self._drain_task is not None:
            await asyncio.shield(self._drain_task)

    def handle_event(self, event: ChangeEvent) -> None:
        """Routes one change event. Never raises for per-project problems.

        Args:
            event (ChangeEvent): The filesystem change.
        """
        path = event.path

        if self.patterns_file is not None and path == self.patterns_file:
            logger.info(f"Ignore patterns changed ({path.name}), reloading")
            self.ignore.reload()
            self.request_full_sweep()
            return

        project = resolve_project(path, self.roots)
        if project is None or self.ignore.should_ignore(path):
            return

        if path == project / EXCLUDE_FILE:
            self.ignore.reload_project(project)
            if self.resync_on_ignore_change:
                self.mark_pending(project)
            return

        if self.quick_sync_enabled and path != project:
            self._quick_queue.put_nowait((project, path))
        self.mark_pending(project)

    def mark_pending(self, project: Path) -> None:
        """Adds a project to the pending set and re-arms the shared timer."""
        self.state.mark_pending(project)
        loop = asyncio.get_running_loop()
        self.state.rearm(loop.call_later(self.debounce, self._on_timer))

    async def full_sweep(self) -> None:
        """Discovers and syncs every project, joining a sweep already in flight."""
        if self.state.try_begin_full_sync():
            task = asyncio.get_running_loop().create_task(self._sweep())
            # Runs even if the task is cancelled before its first step.
            task.add_done_callback(lambda _: self.state.end_full_sync())
            self._sweep_task = task
        elif self._sweep_task is None:
            return
        await asyncio.shield(self._sweep_task)

    def request_full_sweep(self) -> None:
        """Starts (or joins) a full sweep in the background."""
        self._spawn(self.full_sweep())

    def _on_timer(self) -> None:
        self.state.timer = None
        if self.state.draining:
            # The running drain re-checks the pending set before it exits.
            return
        self._drain_task = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        if not self.state.try_begin_drain():
            return
        try:
            while self.state.pending:
                for project in self.state.take_pending():
                    if not project.is_dir():
                        logger.info(f"[{project.name}] Project no longer exists, skipped")
                        continue
                    logger.info(f"[{project.name}] Change detected, syncing...")
                    await self._sync_one(project)
        finally:
            self.state.end_drain()

    async def _sweep(self) -> None:
        try:
            projects = self._discover()
        except Exception:
            logger.exception("Project discovery failed")
            return
        logger.info(f"Found {len(projects)} project(s)")
        for project in projects:
            await self._sync_one(project)
        logger.info("Full sync complete")

    async def _sync_one(self, project: Path) -> None:
        async with self._lock(project):
            try:
                await self._sync(project)
            except SyncError as e:
                logger.error(f"[{e.project}] ERROR: {e}")
            except Exception:
                logger.exception(f"[{project.name}] Unexpected error during sync")

    async def _quick_worker(self) -> None:
        while True:
            project, path = await self._quick_queue.get()
            try:
                async with self._lock(project):
                    await self._quick_sync(project, path)
            except SyncError as e:
                logger.error(f"[{e.project}] QUICK SYNC ERROR: {e}")
            except Exception:
                logger.exception(f"[{project.name}] Unexpected error during quick sync")
            finally:
                self._quick_queue.task_done()

    def _lock(self, project: Path) -> asyncio.Lock:
        return self._locks.setdefault(project, asyncio.Lock())

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
