import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from .constants import APP_NAME, DEFAULT_BRANCH, GIT_DIR
from .exceptions import CommandError

logger = logging.getLogger(APP_NAME)


@dataclass
class GitResult:
    """Normalized output of a finished git command."""

    stdout: str
    stderr: str


class GitRepo:
    """An async wrapper around the Git command-line interface for one working tree.

    Commands run as subprocesses with explicit argument vectors, never through
    a shell. Each call suspends the caller until git exits while the event loop
    keeps serving other work.

    Attributes:
        path (Path): The working tree root.
        askpass (Path | None): Credential helper injected for network commands.
    """

    def __init__(self, path: Path, askpass: Path | None = None):
        """Initializes the GitRepo instance.

        Args:
            path (Path): The working tree root. It need not be a repository yet.
            askpass (Path | None, optional): Path of the askpass helper script
                used by fetch and push. Defaults to None.
        """
        self.path = path
        self.askpass = askpass

    def _env(self, network: bool) -> dict[str, str]:
        env = os.environ.copy()
        # File names are never pathspec patterns (':notes.txt', 'a*.txt').
        env["GIT_LITERAL_PATHSPECS"] = "1"
        if network:
            env["GIT_TERMINAL_PROMPT"] = "0"
            if self.askpass is not None:
                env["GIT_ASKPASS"] = str(self.askpass)
        return env

    async def run(self, args: list[str], network: bool = False) -> GitResult:
        """Executes a Git command within the repository context.

        Args:
            args (list[str]): Arguments passed to the git executable.
            network (bool, optional): Whether the command talks to the remote
                and needs credentials. Defaults to False.

        Returns:
            GitResult: Stdout (trailing whitespace removed) and stripped stderr.

        Raises:
            CommandError: If git exits non-zero or cannot be started.
        """
        try:
            process = await asyncio.create_subprocess_exec(
                "git",
                *args,
                cwd=self.path,
                env=self._env(network),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout_bytes, stderr_bytes = await process.communicate()
        except OSError as e:
            raise CommandError(args, self.path, str(e)) from e

        stdout = stdout_bytes.decode("utf-8", errors="replace").rstrip()
        stderr = stderr_bytes.decode("utf-8", errors="replace").strip()
        if process.returncode != 0:
            message = stderr or stdout.strip() or f"exit status {process.returncode}"
            raise CommandError(args, self.path, message, process.returncode)
        return GitResult(stdout=stdout, stderr=stderr)

    def has_metadata(self) -> bool:
        """Returns True if the working tree already has a .git directory."""
        return (self.path / GIT_DIR).exists()

    async def init(self, branch: str = DEFAULT_BRANCH) -> None:
        """Creates a repository whose first branch is ``branch``."""
        await self.run(["init", "-b", branch])

    async def config_get(self, key: str) -> str | None:
        """Reads a local config value.

        Args:
            key (str): The config key (e.g., 'user.name').

        Returns:
            str | None: The value, or None if the key is unset.
        """
        try:
            return (await self.run(["config", "--get", key])).stdout
        except CommandError:
            return None

    async def config_set(self, key: str, value: str) -> None:
        await self.run(["config", key, value])

    async def remote_get_url(self, name: str) -> str | None:
        """Returns the URL of a remote alias, or None if it does not exist."""
        try:
            return (await self.run(["remote", "get-url", name])).stdout
        except CommandError:
            return None

    async def remote_add(self, name: str, url: str) -> None:
        await self.run(["remote", "add", name, url])

    async def remote_set_url(self, name: str, url: str) -> None:
        await self.run(["remote", "set-url", name, url])

    async def is_shallow(self) -> bool:
        """Checks whether the clone has truncated history."""
        result = await self.run(["rev-parse", "--is-shallow-repository"])
        return result.stdout.strip() == "true"

    async def unshallow(self, remote: str) -> None:
        """Fetches the missing history of a shallow clone."""
        await self.run(["fetch", "--unshallow", remote], network=True)

    async def add_all(self) -> None:
        """
        Stages all changes (modified, deleted, and untracked files)
        in the working tree.
        """
        await self.run(["add", "-A"])

    async def add_path(self, rel_path: str) -> None:
        await self.run(["add", "--", rel_path])

    async def check_ignore(self, rel_path: str) -> bool:
        """Asks git whether a path is excluded by any of its ignore sources.

        Covers nested .gitignore files, .git/info/exclude and core.excludesFile.
        Tracked paths are never reported as ignored.

        Args:
            rel_path (str): Path relative to the working tree root.

        Returns:
            bool: True if ``git add`` would refuse the path.
        """
        try:
            await self.run(["check-ignore", "-q", "--", rel_path])
            return True
        except CommandError as e:
            # Exit status 1: not ignored. Anything else is a real failure.
            if e.returncode == 1:
                return False
            raise

    async def remove_path(self, rel_path: str) -> None:
        """Drops a path from the index; missing or untracked paths are not an error."""
        await self.run(
            ["rm", "-r", "--cached", "--ignore-unmatch", "--quiet", "--", rel_path]
        )

    async def status_porcelain(self, path: str | None = None) -> list[str]:
        """Returns the porcelain (machine-readable) status of the repository.

        Args:
            path (str | None, optional): Limit the status to this path.
                Defaults to None.

        Returns:
            list[str]: The lines of ``git status --porcelain``.
        """
        cmd = ["status", "--porcelain"]
        if path:
            cmd.extend(["--", path])
        output = (await self.run(cmd)).stdout
        return output.splitlines() if output else []

    async def commit(self, message: str) -> None:
        await self.run(["commit", "-m", message])

    async def has_head(self) -> bool:
        """Returns True once the repository has at least one commit."""
        try:
            await self.run(["rev-parse", "--verify", "--quiet", "HEAD"])
            return True
        except CommandError:
            return False

    async def current_branch(self, default: str = DEFAULT_BRANCH) -> str:
        """Retrieves the name of the checked-out branch.

        Args:
            default (str, optional): Returned when HEAD is detached or the
                branch cannot be determined.

        Returns:
            str: The branch name.
        """
        try:
            branch = (await self.run(["rev-parse", "--abbrev-ref", "HEAD"])).stdout
        except CommandError as e:
            logger.debug(f"Could not determine branch in {self.path}: {e}")
            return default
        branch = branch.strip()
        return branch if branch and branch != "HEAD" else default

    async def has_upstream(self, branch: str) -> bool:
        """Checks whether ``branch`` already tracks a remote branch."""
        try:
            await self.run(["rev-parse", "--abbrev-ref", f"{branch}@{{u}}"])
            return True
        except CommandError:
            return False

    async def push(
        self,
        remote: str,
        branch: str,
        set_upstream: bool = False,
        force: bool = False,
    ) -> GitResult:
        """Pushes ``branch`` to ``remote``.

        Args:
            remote (str): The remote alias.
            branch (str): The branch to publish.
            set_upstream (bool, optional): Record the remote branch as upstream.
            force (bool, optional): Overwrite the remote branch.

        Returns:
            GitResult: The command output.
        """
        cmd = ["push"]
        if force:
            cmd.append("--force")
        if set_upstream:
            cmd.append("--set-upstream")
        cmd.extend([remote, branch])
        return await self.run(cmd, network=True)

    async def fetch(self, remote: str, branch: str | None = None) -> None:
        cmd = ["fetch", remote]
        if branch:
            cmd.append(branch)
        await self.run(cmd, network=True)

    async def rebase(self, onto: str) -> None:
        """Replays local commits on top of ``onto`` (e.g., 'gitea/main')."""
        await self.run(["rebase", onto])

    async def rebase_abort(self) -> None:
        try:
            await self.run(["rebase", "--abort"])
        except CommandError as e:
            logger.debug(f"rebase --abort in {self.path}: {e}")

    async def reflog_expire(self, days: int) -> None:
        await self.run(["reflog", "expire", f"--expire={days}.days.ago", "--all"])

    async def gc(self, days: int) -> None:
        await self.run(["gc", "--quiet", f"--prune={days}.days.ago"])
