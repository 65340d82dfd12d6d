"""Global constants for Gitea AutoSync.

This module defines application identifiers, the default configuration
location, and the fixed Git values (remote alias, default branch, commit
message prefix, transport tuning) used across the sync engine.
"""

from pathlib import Path

# --- Identity ---
APP_NAME = "gitea-autosync"
"""str: The human-readable application name (also the logger name)."""

VERSION = "0.1.0"
"""str: The package version reported by ``--version``."""

# --- Configuration Paths ---
CONFIG_DIR: Path = Path.home() / ".config/gitea-autosync"
"""Path: The directory for user configuration files."""

CONFIG_FILE: Path = CONFIG_DIR / "config.toml"
"""Path: The default TOML configuration file path."""

# --- Remote / Git Constants ---
DEFAULT_OWNER = "autosync"
"""str: The remote account that owns mirrored repositories by default."""

REMOTE_NAME = "gitea"
"""str: The git remote alias that points at the hosting service."""

DEFAULT_BRANCH = "main"
"""str: Branch used for new repositories and when HEAD is detached."""

GIT_DIR = ".git"
"""str: The version-control metadata directory name."""

EXCLUDE_FILE = ".gitignore"
"""str: The per-project exclusion file name."""

COMMIT_PREFIX = "Auto backup"
"""str: Prefix of every automatic commit message."""

API_TIMEOUT = 15.0
"""float: Seconds before a hosting API request is abandoned."""

GIT_TUNING = {
    "commit.gpgsign": "false",
    "http.postBuffer": "524288000",
}
"""dict[str, str]: Repository settings applied so unattended pushes succeed."""

DEFAULT_IGNORES = [
    "node_modules/",
    "dist/",
    "build/",
    "logs/",
    "tmp/",
    "cache/",
    "coverage/",
    "__pycache__/",
    "*.log",
    "*.tmp",
    ".DS_Store",
]
"""list[str]: Built-in exclusion patterns, also seeded into new .gitignore files."""

NON_FAST_FORWARD_MARKERS = ("non-fast-forward", "fetch first", "rejected")
"""tuple[str, ...]: Push error fragments meaning the remote is ahead."""
