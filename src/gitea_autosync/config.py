import logging
import os
import re
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any
from urllib.parse import quote

from dotenv import load_dotenv

from .constants import (
    API_TIMEOUT,
    APP_NAME,
    CONFIG_FILE,
    DEFAULT_BRANCH,
    DEFAULT_OWNER,
    REMOTE_NAME,
)
from .exceptions import ConfigurationError

logger = logging.getLogger(APP_NAME)

CONFLICT_POLICIES = ("rebase", "force")

ENV_VARS: dict[str, tuple[str, str]] = {
    "GITEA_BASE_URL": ("remote", "base_url"),
    "GITEA_TOKEN": ("remote", "token"),
    "GITEA_OWNER": ("remote", "owner"),
    "PROJECTS_ROOT": ("sync", "projects_root"),
    "EXTRA_PROJECT_ROOTS": ("sync", "extra_roots"),
    "SYNC_DEBOUNCE_MS": ("sync", "debounce"),
    "AUTOSYNC_QUICK_SYNC": ("sync", "quick_sync"),
    "AUTOSYNC_CONFLICT_POLICY": ("sync", "conflict_policy"),
    "AUTOSYNC_PRUNE_DAYS": ("sync", "prune_days"),
    "AUTOSYNC_FULL_SYNC_INTERVAL": ("sync", "full_sync_interval"),
    "AUTOSYNC_RESYNC_ON_IGNORE_CHANGE": ("sync", "resync_on_ignore_change"),
    "GIT_AUTHOR_NAME": ("identity", "name"),
    "GIT_AUTHOR_EMAIL": ("identity", "email"),
    "AUTOSYNC_IGNORE_FILE": ("files", "ignore_file"),
    "AUTOSYNC_LOG_FILE": ("limits", "log_file"),
}
"""Maps environment variables to their (section, key) in the config tree."""

_TIME_KEYS = {"debounce", "full_sync_interval", "timeout"}
_BOOL_KEYS = {"quick_sync", "resync_on_ignore_change"}
_PATH_KEYS = {"projects_root", "ignore_file", "log_file"}


def parse_size(value: int | str) -> int:
    """Converts human-readable size strings (e.g., '100MB') to bytes."""
    if isinstance(value, int):
        return value
    match = re.match(r"^(\d+(?:\.\d+)?)\s*([kmg]b?)$", str(value).strip().lower())
    if not match:
        raise ValueError(f"Invalid size format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "k": 1024,
        "kb": 1024,
        "m": 1024**2,
        "mb": 1024**2,
        "g": 1024**3,
        "gb": 1024**3,
    }
    return int(num * multiplier[unit])


def parse_time(value: int | float | str) -> float:
    """Converts human-readable time strings (e.g., '3s', '500ms', '1hr') to seconds."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    match = re.match(
        r"^(\d+(?:\.\d+)?)\s*(ms|s|sec|m|min|h|hr|d|day)s?$", str(value).strip().lower()
    )
    if not match:
        raise ValueError(f"Invalid time format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "ms": 0.001,
        "s": 1,
        "sec": 1,
        "m": 60,
        "min": 60,
        "h": 3600,
        "hr": 3600,
        "d": 86400,
        "day": 86400,
    }
    return num * multiplier[unit]


def parse_bool(value: bool | str) -> bool:
    """Interprets common truthy/falsy spellings ('1', 'yes', 'off', ...)."""
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off", ""):
        return False
    raise ValueError(f"Invalid boolean '{value}'")


@dataclass
class RemoteConfig:
    """Hosting service settings.

    Attributes:
        base_url (str): Root URL of the Gitea instance (no trailing slash).
        token (str): API token, also used as the git password.
        owner (str): Account that owns the mirrored repositories.
        remote_name (str): The git remote alias to push to.
        timeout (float): HTTP request timeout in seconds.
    """

    base_url: str = ""
    token: str = ""
    owner: str = DEFAULT_OWNER
    remote_name: str = REMOTE_NAME
    timeout: float = API_TIMEOUT

    @property
    def api_url(self) -> str:
        return f"{self.base_url}/api/v1"

    def repo_url(self, name: str) -> str:
        """Returns the clone URL for a repository owned by ``owner``."""
        return f"{self.base_url}/{self.owner}/{quote(name)}.git"


@dataclass
class SyncConfig:
    """Sync engine settings.

    Attributes:
        projects_root (Path): The primary root whose children are projects.
        extra_roots (list[Path]): Additional roots.
        debounce (float): Seconds of quiet before pending projects sync.
        quick_sync (bool): Commit each changed path immediately.
        conflict_policy (str): 'rebase' (fetch+rebase, then force) or 'force'.
        prune_days (int): Reflog/gc age threshold in days; 0 disables.
        full_sync_interval (float): Seconds between periodic sweeps; 0 disables.
        resync_on_ignore_change (bool): Sync a project when its .gitignore changes.
        default_branch (str): Branch for new repositories.
        watch_stability (int): Milliseconds the watcher waits for writes to settle.
    """

    projects_root: Path = field(default_factory=lambda: Path.cwd() / "projects")
    extra_roots: list[Path] = field(default_factory=list)
    debounce: float = 3.0
    quick_sync: bool = True
    conflict_policy: str = "rebase"
    prune_days: int = 0
    full_sync_interval: float = 0
    resync_on_ignore_change: bool = False
    default_branch: str = DEFAULT_BRANCH
    watch_stability: int = 500

    @property
    def roots(self) -> list[Path]:
        """The primary and extra roots, resolved, duplicates removed."""
        seen: dict[Path, None] = {}
        for root in [self.projects_root, *self.extra_roots]:
            seen.setdefault(Path(root).expanduser().resolve(), None)
        return list(seen)


@dataclass
class IdentityConfig:
    """Commit author identity.

    Attributes:
        name (str): Value for ``user.name``.
        email (str): Value for ``user.email``.
    """

    name: str = "Gitea Autosync"
    email: str = "autosync@example.com"


@dataclass
class FilesConfig:
    """Exclusion settings.

    Attributes:
        ignore_file (Path | None): Optional TOML file with a ``patterns`` list.
    """

    ignore_file: Path | None = None


@dataclass
class LimitsConfig:
    """Logging limits.

    Attributes:
        log_file (Path | None): Optional rotating log file.
        max_log_size (int): Max bytes for the log file before rotation.
    """

    log_file: Path | None = None
    max_log_size: int = 5 * 1024 * 1024


@dataclass
class Config:
    """Global configuration aggregator.

    Attributes:
        remote (RemoteConfig): Hosting service settings.
        sync (SyncConfig): Sync engine settings.
        identity (IdentityConfig): Commit identity.
        files (FilesConfig): Exclusion settings.
        limits (LimitsConfig): Logging limits.
    """

    remote: RemoteConfig = field(default_factory=RemoteConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    identity: IdentityConfig = field(default_factory=IdentityConfig)
    files: FilesConfig = field(default_factory=FilesConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)

    @classmethod
    def load(
        cls,
        config_file: Path | None = None,
        environ: Mapping[str, str] | None = None,
        use_dotenv: bool = True,
    ) -> "Config":
        """Builds the configuration from defaults, a TOML file and the environment.

        Args:
            config_file (Path | None): Explicit TOML file. Falls back to
                ``AUTOSYNC_CONFIG`` and then the user config file, if present.
            environ (Mapping[str, str] | None): Environment to read. Defaults
                to ``os.environ``.
            use_dotenv (bool): Whether to load a ``.env`` file first.

        Returns:
            Config: The validated configuration.

        Raises:
            ConfigurationError: If a required setting is missing.
        """
        if use_dotenv:
            load_dotenv()
        env = os.environ if environ is None else environ

        instance = cls()

        if config_file is None and env.get("AUTOSYNC_CONFIG"):
            config_file = Path(env["AUTOSYNC_CONFIG"]).expanduser()
        if config_file is not None:
            if config_file.exists():
                instance._merge_from_file(config_file)
            else:
                logger.warning(f"Config file {config_file} not found. Ignoring.")
        elif CONFIG_FILE.exists():
            instance._merge_from_file(CONFIG_FILE)

        instance._merge_from_env(env)
        instance.validate()
        return instance

    def validate(self) -> None:
        """Ensures the settings needed to reach the remote are present.

        Raises:
            ConfigurationError: Naming the missing or malformed variable.
        """
        if not self.remote.base_url:
            raise ConfigurationError("Missing GITEA_BASE_URL environment variable")
        if not re.match(r"^https?://", self.remote.base_url):
            raise ConfigurationError(
                f"GITEA_BASE_URL must start with http:// or https:// "
                f"(got '{self.remote.base_url}')"
            )
        if not self.remote.token:
            raise ConfigurationError("Missing GITEA_TOKEN environment variable")
        if not self.remote.owner:
            raise ConfigurationError("GITEA_OWNER must not be empty")

    def _merge_from_file(self, path: Path) -> None:
        """Parses a TOML file and merges its sections into the current instance.

        Args:
            path (Path): Path to the TOML file.
        """
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Config syntax error in {path}: {e}")
            return
        except OSError as e:
            logger.warning(f"Failed to load config from {path}: {e}")
            return

        self._merge_sections(data)

    def _merge_from_env(self, environ: Mapping[str, str]) -> None:
        sections: dict[str, dict[str, Any]] = {}
        for var, (section, key) in ENV_VARS.items():
            value = environ.get(var)
            if value is None or value == "":
                continue
            if var == "SYNC_DEBOUNCE_MS":
                value = f"{value.strip()}ms"
            sections.setdefault(section, {})[key] = value
        self._merge_sections(sections)

    def _merge_sections(self, data: dict[str, Any]) -> None:
        for section_name in ("remote", "sync", "identity", "files", "limits"):
            if section_name in data:
                current = getattr(self, section_name)
                setattr(
                    self,
                    section_name,
                    self._update_dataclass(section_name, current, data[section_name]),
                )

    @staticmethod
    def _update_dataclass(section_name: str, instance: Any, updates: dict) -> Any:
        """Updates a dataclass, warning on invalid keys and parsing human-readable formats."""
        valid_keys = instance.__dataclass_fields__.keys()
        filtered_updates = {}

        # 1. Catch and warn about typos / unknown keys
        invalid_keys = set(updates.keys()) - set(valid_keys)
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in [{section_name}]: "
                f"{', '.join(sorted(invalid_keys))}. Ignoring."
            )

        # 2. Process valid keys
        for k, v in updates.items():
            if k not in valid_keys:
                continue

            try:
                filtered_updates[k] = _coerce(k, v)
            except (TypeError, ValueError) as e:
                logger.warning(
                    f"Config error in [{section_name}].{k}: {e}. Falling back to default."
                )

        return replace(instance, **filtered_updates)


def _coerce(key: str, value: Any) -> Any:
    """Routes a raw config value through the parser its key requires."""
    if key in _TIME_KEYS:
        return parse_time(value)
    if key in _BOOL_KEYS:
        return parse_bool(value)
    if key in _PATH_KEYS:
        return Path(str(value)).expanduser()
    if key == "max_log_size":
        return parse_size(value)
    if key == "prune_days":
        days = int(value)
        if days < 0:
            raise ValueError(f"Invalid prune age '{value}'")
        return days
    if key == "extra_roots":
        if isinstance(value, str):
            value = [part for part in value.split(os.pathsep) if part.strip()]
        return [Path(str(p).strip()).expanduser() for p in value]
    if key == "conflict_policy":
        policy = str(value).strip().lower()
        if policy not in CONFLICT_POLICIES:
            raise ValueError(
                f"Unknown policy '{value}' (expected {' or '.join(CONFLICT_POLICIES)})"
            )
        return policy
    if key == "base_url":
        return str(value).strip().rstrip("/")
    return value
