import asyncio
import datetime
import enum
import logging
import os
import shutil
from collections.abc import Awaitable
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar

from .config import Config
from .constants import (
    APP_NAME,
    COMMIT_PREFIX,
    EXCLUDE_FILE,
    GIT_DIR,
    GIT_TUNING,
    NON_FAST_FORWARD_MARKERS,
)
from .exceptions import AutosyncError, CommandError, ConflictError, SyncError
from .git_wrapper import GitRepo
from .ignore import IgnoreResolver
from .remote import RemoteClient

logger = logging.getLogger(APP_NAME)

T = TypeVar("T")


class PushOutcome(enum.Enum):
    """How a publish attempt reached the remote."""

    PUSHED = "pushed"
    UP_TO_DATE = "up-to-date"
    REBASED = "rebased"
    FORCED = "forced"


@dataclass
class SyncResult:
    """Summary of one sync of one project.

    Attributes:
        project (Path): The project directory.
        initialized (bool): A repository was created during this sync.
        committed (bool): A new commit was recorded.
        push (PushOutcome | None): Publish outcome, None if nothing was published.
    """

    project: Path
    initialized: bool = False
    committed: bool = False
    push: PushOutcome | None = None


@dataclass
class SyncContext:
    """Collaborators shared by every sync operation."""

    config: Config
    remote: RemoteClient
    ignore: IgnoreResolver
    askpass: Path | None = None

    def repo(self, project: Path) -> GitRepo:
        return GitRepo(project, askpass=self.askpass)


def timestamp() -> str:
    """Current UTC time in sortable ISO-8601 form (e.g., 2024-05-01T12:00:00Z)."""
    return datetime.datetime.now(datetime.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def commit_message(rel_path: str | None = None) -> str:
    message = f"{COMMIT_PREFIX} {timestamp()}"
    if rel_path:
        message += f" ({rel_path})"
    return message


def is_non_fast_forward(message: str) -> bool:
    """Returns True if a push error means the remote branch is ahead."""
    return any(marker in message for marker in NON_FAST_FORWARD_MARKERS)


async def _step(project: Path, step: str, awaitable: Awaitable[T]) -> T:
    try:
        return await awaitable
    except SyncError:
        raise
    except AutosyncError as e:
        raise SyncError(project.name, step, e) from e


async def ensure_local_repo(repo: GitRepo, branch: str) -> bool:
    """Initializes a repository if the working tree has none.

    Returns:
        bool: True if ``git init`` ran.
    """
    if repo.has_metadata():
        return False
    await repo.init(branch)
    return True


def seed_exclusion_file(project: Path, patterns: list[str]) -> bool:
    """Writes the resolved pattern list as the project's .gitignore.

    An existing file is never overwritten.

    Returns:
        bool: True if the file was written.
    """
    target = project / EXCLUDE_FILE
    if target.exists():
        return False
    try:
        target.write_text("\n".join(patterns) + "\n", encoding="utf-8")
    except OSError as e:
        logger.warning(f"[{project.name}] Could not write {EXCLUDE_FILE}: {e}")
        return False
    return True


def flatten_nested_metadata(project: Path) -> list[Path]:
    """Removes version-control metadata nested below the project root.

    Only ``<project>/.git`` survives; a sub-project's own repository would
    otherwise be recorded as an opaque gitlink instead of its files.

    Args:
        project (Path): The project directory.

    Returns:
        list[Path]: The metadata directories that were removed.
    """
    removed: list[Path] = []
    for dirpath, dirnames, _ in os.walk(project):
        if GIT_DIR not in dirnames:
            continue
        dirnames.remove(GIT_DIR)
        current = Path(dirpath)
        if current == project:
            continue
        nested = current / GIT_DIR
        try:
            shutil.rmtree(nested)
        except OSError as e:
            logger.warning(f"[{project.name}] Could not remove {nested}: {e}")
            continue
        removed.append(nested)
    return removed


async def ensure_identity(repo: GitRepo, name: str, email: str) -> None:
    """Applies author identity and transport settings that are not yet in place."""
    settings = {"user.name": name, "user.email": email, **GIT_TUNING}
    for key, value in settings.items():
        if await repo.config_get(key) != value:
            await repo.config_set(key, value)


async def ensure_remote_alias(repo: GitRepo, remote_name: str, url: str) -> None:
    """Adds the remote alias, or repoints it if its URL changed."""
    current = await repo.remote_get_url(remote_name)
    if current is None:
        await repo.remote_add(remote_name, url)
    elif current != url:
        await repo.remote_set_url(remote_name, url)


async def ensure_full_history(repo: GitRepo, remote_name: str) -> None:
    """Deepens a shallow clone. Failure is logged, never raised."""
    try:
        if await repo.is_shallow():
            await repo.unshallow(remote_name)
            logger.info(f"[{repo.path.name}] Fetched full history")
    except CommandError as e:
        logger.warning(
            f"[{repo.path.name}] Could not deepen shallow clone "
            f"(manual intervention may be required): {e.message}"
        )


async def commit_staged(repo: GitRepo, message: str) -> bool:
    """Commits the index. "Nothing to commit" counts as success.

    Returns:
        bool: True if a commit was created.
    """
    try:
        await repo.commit(message)
    except CommandError as e:
        if "nothing to commit" in e.message or "no changes added" in e.message:
            return False
        raise
    return True


async def commit_if_changed(repo: GitRepo, message: str) -> bool:
    """Commits when the status reports staged changes."""
    if not await repo.status_porcelain():
        return False
    return await commit_staged(repo, message)


async def publish(
    repo: GitRepo,
    remote_name: str,
    default_branch: str,
    conflict_policy: str = "rebase",
) -> PushOutcome:
    """Pushes the current branch, recovering from a remote that moved ahead.

    On a non-fast-forward rejection the ``rebase`` policy fetches, rebases the
    local commits onto the remote branch and retries once. If that fails, or
    under the ``force`` policy, the branch is force-pushed: local history wins
    and remote-only commits are lost.

    Args:
        repo (GitRepo): The project repository.
        remote_name (str): The remote alias.
        default_branch (str): Branch used if HEAD is detached.
        conflict_policy (str, optional): 'rebase' or 'force'.

    Returns:
        PushOutcome: How the branch reached the remote.

    Raises:
        CommandError: If the push failed for a reason other than divergence.
        ConflictError: If the force-push fallback failed.
    """
    name = repo.path.name
    branch = await repo.current_branch(default_branch)
    set_upstream = not await repo.has_upstream(branch)

    try:
        result = await repo.push(remote_name, branch, set_upstream=set_upstream)
        if "Everything up-to-date" in result.stderr:
            return PushOutcome.UP_TO_DATE
        return PushOutcome.PUSHED
    except CommandError as e:
        if not is_non_fast_forward(e.message):
            raise
        logger.info(f"[{name}] Push rejected: {remote_name}/{branch} is ahead")

    if conflict_policy == "rebase":
        try:
            await repo.fetch(remote_name, branch)
            await repo.rebase(f"{remote_name}/{branch}")
            await repo.push(remote_name, branch, set_upstream=set_upstream)
            logger.info(f"[{name}] Rebased onto {remote_name}/{branch} and pushed")
            return PushOutcome.REBASED
        except CommandError as e:
            logger.warning(f"[{name}] Rebase recovery failed: {e}")
            await repo.rebase_abort()

    try:
        await repo.push(remote_name, branch, set_upstream=set_upstream, force=True)
    except CommandError as e:
        raise ConflictError(f"Force push of {branch} failed: {e.message}") from e
    logger.warning(
        f"[{name}] Force pushed {branch} (local is authoritative; "
        "remote-only commits were overwritten)"
    )
    return PushOutcome.FORCED


async def run_maintenance(repo: GitRepo, days: int) -> None:
    """Expires old reflog entries and garbage-collects unreachable objects."""
    try:
        await repo.reflog_expire(days)
        await repo.gc(days)
    except CommandError as e:
        logger.warning(f"[{repo.path.name}] Maintenance failed: {e}")


async def sync_project(project: Path, ctx: SyncContext) -> SyncResult:
    """Reconciles a project's whole working tree with its remote repository.

    Steps:
    1. Ensures the remote repository exists.
    2. Initializes git (seeding .gitignore) when needed.
    3. Removes nested .git directories.
    4. Applies identity, transport settings and the remote alias.
    5. Deepens shallow clones.
    6. Stages everything and commits if anything changed.
    7. Publishes, then runs optional maintenance.

    Args:
        project (Path): The project directory.
        ctx (SyncContext): Shared collaborators.

    Returns:
        SyncResult: What the sync did.

    Raises:
        SyncError: Wrapping the failing step and its cause.
    """
    conf = ctx.config
    remote_name = conf.remote.remote_name
    name = project.name
    repo = ctx.repo(project)
    result = SyncResult(project)

    await _step(project, "ensure remote", ctx.remote.ensure_repo(name))

    result.initialized = await _step(
        project, "init", ensure_local_repo(repo, conf.sync.default_branch)
    )
    if result.initialized:
        logger.info(f"[{name}] Initialized git repository")
        if seed_exclusion_file(project, ctx.ignore.patterns):
            logger.info(f"[{name}] Created default {EXCLUDE_FILE}")
            ctx.ignore.reload_project(project)

    for nested in await asyncio.to_thread(flatten_nested_metadata, project):
        logger.warning(f"[{name}] Removed nested repository metadata {nested}")

    await _step(
        project,
        "configure",
        ensure_identity(repo, conf.identity.name, conf.identity.email),
    )
    await _step(
        project,
        "set remote",
        ensure_remote_alias(repo, remote_name, ctx.remote.repo_url(name)),
    )
    await ensure_full_history(repo, remote_name)

    await _step(project, "stage", repo.add_all())
    result.committed = await _step(
        project, "commit", commit_if_changed(repo, commit_message())
    )
    if result.committed:
        logger.info(f"[{name}] Committed changes")
    else:
        logger.info(f"[{name}] No changes to commit")

    if not await repo.has_head():
        logger.info(f"[{name}] Nothing to publish yet")
        return result

    result.push = await _step(
        project,
        "push",
        publish(
            repo, remote_name, conf.sync.default_branch, conf.sync.conflict_policy
        ),
    )
    if result.push is PushOutcome.UP_TO_DATE:
        logger.info(f"[{name}] Remote already up to date")
    else:
        logger.info(f"[{name}] Pushed to {remote_name}")

    if conf.sync.prune_days > 0:
        await run_maintenance(repo, conf.sync.prune_days)

    return result


async def quick_sync(project: Path, path: Path, ctx: SyncContext) -> SyncResult | None:
    """Stages, commits and pushes a single changed path.

    Projects that are not initialized or have no remote alias yet are left to
    the next full sync.

    Args:
        project (Path): The owning project.
        path (Path): The changed path inside the project.
        ctx (SyncContext): Shared collaborators.

    Returns:
        SyncResult | None: None if the path was deferred to the full sync.

    Raises:
        SyncError: If staging, committing or pushing failed.
    """
    conf = ctx.config
    remote_name = conf.remote.remote_name
    repo = ctx.repo(project)

    if not repo.has_metadata():
        return None
    if await repo.remote_get_url(remote_name) is None:
        return None

    rel = path.relative_to(project).as_posix()
    result = SyncResult(project)

    if await _step(project, "quick stage", repo.check_ignore(rel)):
        logger.debug(f"[{project.name}] Skipped ignored path: {rel}")
        return result

    if path.exists():
        await _step(project, "quick stage", repo.add_path(rel))
    else:
        await _step(project, "quick stage", repo.remove_path(rel))

    status = await _step(project, "quick status", repo.status_porcelain(rel))
    # Porcelain column X holds the index state; ' ' and '?' mean nothing staged.
    if not any(line[:1] not in (" ", "?") for line in status):
        return result

    result.committed = await _step(
        project, "quick commit", commit_staged(repo, commit_message(rel))
    )
    if not result.committed:
        return result
    logger.info(f"[{project.name}] Quick commit: {rel}")

    result.push = await _step(
        project,
        "quick push",
        publish(
            repo, remote_name, conf.sync.default_branch, conf.sync.conflict_policy
        ),
    )
    return result
