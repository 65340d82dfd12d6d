"""Error taxonomy for Gitea AutoSync."""

from pathlib import Path


class AutosyncError(Exception):
    """Base class for every error raised by the sync engine."""


class ConfigurationError(AutosyncError):
    """Required configuration is missing or invalid. Fatal at startup."""


class DiscoveryError(AutosyncError):
    """A project root exists but could not be enumerated."""

    def __init__(self, root: Path, reason: str):
        self.root = root
        super().__init__(f"Cannot list {root}: {reason}")


class RemoteApiError(AutosyncError):
    """The hosting API returned an unexpected status or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class CommandError(AutosyncError):
    """A git subprocess exited with a non-zero status.

    Attributes:
        args_list (list[str]): The git arguments that were executed.
        cwd (Path): The working directory of the command.
        message (str): The captured standard error (or spawn failure).
        returncode (int | None): The exit status, None if git never started.
    """

    def __init__(
        self, args: list[str], cwd: Path, message: str, returncode: int | None = None
    ):
        self.args_list = list(args)
        self.cwd = cwd
        self.message = message
        self.returncode = returncode
        super().__init__(f"git {' '.join(args)}: {message}")


class ConflictError(AutosyncError):
    """A push was rejected and the force-push fallback failed as well."""


class SyncError(AutosyncError):
    """Wraps a failure of one sync pipeline step with its project context."""

    def __init__(self, project: str, step: str, cause: Exception):
        self.project = project
        self.step = step
        self.cause = cause
        super().__init__(f"{step} failed: {cause}")
