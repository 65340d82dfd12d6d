"""Askpass helper that feeds the remote identity and token to git.

git invokes the script named by ``GIT_ASKPASS`` with the prompt text as its
first argument; the script answers the username prompt with the identity and
every other prompt with the secret.
"""

import logging
import os
import shlex
import tempfile
import time
from pathlib import Path

from .constants import APP_NAME

logger = logging.getLogger(APP_NAME)


def write_askpass_script(
    identity: str, secret: str, directory: Path | None = None
) -> Path:
    """Writes the owner-only askpass script.

    Args:
        identity (str): Answer to the ``Username`` prompt.
        secret (str): Answer to every other prompt.
        directory (Path | None, optional): Target directory. Defaults to the
            system temporary directory.

    Returns:
        Path: The script location, to be exported as ``GIT_ASKPASS``.
    """
    directory = Path(directory or tempfile.gettempdir())
    path = directory / f"gitea-askpass-{os.getpid()}-{int(time.time() * 1000)}.sh"
    script = (
        "#!/bin/sh\n"
        'case "$1" in\n'
        f"  *Username*) echo {shlex.quote(identity)} ;;\n"
        f"  *) echo {shlex.quote(secret)} ;;\n"
        "esac\n"
    )
    # The script embeds the token: owner-only from the moment it exists.
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o700)
    with os.fdopen(fd, "w") as f:
        f.write(script)
    os.chmod(path, 0o700)
    return path


def remove_askpass_script(path: Path) -> None:
    """Deletes the askpass script, tolerating an already-removed file."""
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Could not remove credential helper {path}: {e}")
