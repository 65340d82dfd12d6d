import logging
import os
from pathlib import Path

from .constants import APP_NAME
from .exceptions import DiscoveryError

logger = logging.getLogger(APP_NAME)


def discover(root: Path) -> list[Path]:
    """Lists the project directories directly under a root.

    Hidden entries and non-directories are skipped. The order is whatever the
    filesystem enumerates; callers must not rely on it.

    Args:
        root (Path): The root directory to scan.

    Returns:
        list[Path]: Absolute project paths. Empty if the root does not exist.

    Raises:
        DiscoveryError: If the root exists but cannot be listed.
    """
    try:
        with os.scandir(root) as entries:
            return [
                Path(root) / entry.name
                for entry in entries
                if entry.is_dir() and not entry.name.startswith(".")
            ]
    except FileNotFoundError:
        return []
    except OSError as e:
        raise DiscoveryError(Path(root), e.strerror or str(e)) from e


def discover_all(roots: list[Path]) -> list[Path]:
    """Runs ``discover`` over every root, skipping roots that fail."""
    projects: list[Path] = []
    for root in roots:
        try:
            projects.extend(discover(root))
        except DiscoveryError as e:
            logger.error(f"DISCOVERY ERROR: {e}")
    return projects


def resolve_project(path: Path, roots: list[Path]) -> Path | None:
    """Maps a path to the top-level project directory that owns it.

    The mapping is lexical; nothing is read from disk.

    Args:
        path (Path): Any path, typically from a filesystem event.
        roots (list[Path]): Absolute project roots.

    Returns:
        Path | None: ``<root>/<first segment>``, or None if the path is outside
        every root, is a root itself, or sits under a hidden top-level entry.
    """
    absolute = Path(os.path.normpath(os.path.abspath(path)))
    for root in roots:
        if not absolute.is_relative_to(root):
            continue
        parts = absolute.relative_to(root).parts
        if not parts or parts[0].startswith("."):
            return None
        return Path(root) / parts[0]
    return None
