"""Gitea AutoSync: continuous mirroring of project directories into Gitea.

This package provides the command-line interface, the watch daemon, and the
sync engine that turns every top-level directory under the configured roots
into its own private repository on a Gitea server.
"""

from . import (
    cli,
    config,
    constants,
    credentials,
    daemon,
    discovery,
    exceptions,
    git_wrapper,
    ignore,
    ops,
    remote,
    scheduler,
    watcher,
)

__all__ = [
    "cli",
    "config",
    "constants",
    "credentials",
    "daemon",
    "discovery",
    "exceptions",
    "git_wrapper",
    "ignore",
    "ops",
    "remote",
    "scheduler",
    "watcher",
]
