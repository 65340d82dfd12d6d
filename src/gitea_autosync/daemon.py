import asyncio
import atexit
import logging
import signal
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from . import ops
from .config import Config
from .constants import APP_NAME
from .credentials import remove_askpass_script, write_askpass_script
from .discovery import discover_all
from .ignore import IgnoreResolver
from .remote import RemoteClient
from .scheduler import Scheduler
from .watcher import watch_changes

logger = logging.getLogger(APP_NAME)
logger.setLevel(logging.INFO)


def setup_logging(
    verbose: bool = False,
    log_file: Path | None = None,
    max_log_size: int = 5 * 1024 * 1024,
) -> None:
    """Configures the logging subsystem.

    Args:
        verbose (bool): Enable debug output.
        log_file (Path | None): If set, also log to this file with rotation.
        max_log_size (int): Rotation threshold in bytes for ``log_file``.
    """
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.handlers.clear()

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_log_size,
            backupCount=5,
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)


def build_scheduler(
    config: Config, ctx: ops.SyncContext, roots: list[Path]
) -> Scheduler:
    """Wires the sync pipeline into a scheduler for the given roots."""

    async def sync(project: Path) -> ops.SyncResult:
        return await ops.sync_project(project, ctx)

    async def quick(project: Path, path: Path) -> ops.SyncResult | None:
        return await ops.quick_sync(project, path, ctx)

    return Scheduler(
        roots,
        ctx.ignore,
        sync=sync,
        quick_sync=quick,
        discover=lambda: discover_all(roots),
        debounce=config.sync.debounce,
        quick_sync_enabled=config.sync.quick_sync,
        resync_on_ignore_change=config.sync.resync_on_ignore_change,
        patterns_file=_resolved(config.files.ignore_file),
    )


async def periodic_sweep(
    scheduler: Scheduler, interval: float, stop: asyncio.Event
) -> None:
    """Runs a full sweep every ``interval`` seconds until ``stop`` is set."""
    while not stop.is_set():
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
        except TimeoutError:
            logger.info("--- Scheduled Full Sync ---")
            await scheduler.full_sweep()


async def watch_forever(
    config: Config, scheduler: Scheduler, ignore: IgnoreResolver, roots: list[Path]
) -> None:
    """Feeds filesystem events to the scheduler until SIGINT/SIGTERM."""
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()

    def request_stop() -> None:
        logger.info("Shutting down...")
        stop.set()

    def request_sweep() -> None:
        logger.info("--- Manual Full Sync requested ---")
        scheduler.request_full_sweep()

    handled = [signal.SIGINT, signal.SIGTERM]
    for sig in handled:
        loop.add_signal_handler(sig, request_stop)
    if hasattr(signal, "SIGUSR1"):
        loop.add_signal_handler(signal.SIGUSR1, request_sweep)
        handled.append(signal.SIGUSR1)

    periodic = None
    if config.sync.full_sync_interval > 0:
        periodic = loop.create_task(
            periodic_sweep(scheduler, config.sync.full_sync_interval, stop)
        )

    paths = list(roots)
    if scheduler.patterns_file is not None and scheduler.patterns_file.exists():
        paths.append(scheduler.patterns_file)

    scheduler.start()
    logger.info("File watcher ready - monitoring for changes")
    try:
        async for event in watch_changes(
            paths, ignore.should_ignore, stop, config.sync.watch_stability
        ):
            logger.debug(f"{event.kind.value}: {event.path}")
            scheduler.handle_event(event)
    finally:
        for sig in handled:
            loop.remove_signal_handler(sig)
        if periodic is not None:
            periodic.cancel()
        await scheduler.stop()


async def run(config: Config, watch: bool = False) -> int:
    """The main daemon entry point.

    Performs the initial full sync of every project and, in watch mode, keeps
    mirroring changes until a termination signal arrives.

    Args:
        config (Config): The validated configuration.
        watch (bool, optional): Keep running and watch for changes.

    Returns:
        int: The process exit status.
    """
    askpass = write_askpass_script(config.remote.owner, config.remote.token)
    atexit.register(remove_askpass_script, askpass)

    roots = config.sync.roots
    for root in roots:
        root.mkdir(parents=True, exist_ok=True)

    ignore = IgnoreResolver(roots, _resolved(config.files.ignore_file))

    async with RemoteClient(config.remote, config.sync.default_branch) as remote:
        ctx = ops.SyncContext(config, remote, ignore, askpass)
        scheduler = build_scheduler(config, ctx, roots)

        logger.info("--- Initial Full Sync ---")
        await scheduler.full_sweep()

        if not watch:
            logger.info("--- Single sync complete (use --watch to monitor changes) ---")
            return 0

        logger.info("--- Starting File Watcher ---")
        await watch_forever(config, scheduler, ignore, roots)

    return 0


def _resolved(path: Path | None) -> Path | None:
    return path.expanduser().resolve() if path is not None else None
