"""Exclusion rules deciding which filesystem paths never reach the sync engine.

Three layers are consulted in order: the unconditional ``.git`` exclusion,
the built-in/external pattern list, and each project's own ``.gitignore``.
"""

import fnmatch
import logging
import os
import tomllib
from pathlib import Path

from pathspec import PathSpec

from .constants import APP_NAME, DEFAULT_IGNORES, EXCLUDE_FILE, GIT_DIR
from .discovery import resolve_project

logger = logging.getLogger(APP_NAME)


def load_patterns_file(path: Path) -> list[str]:
    """Reads the ``patterns`` list from a TOML pattern file.

    Args:
        path (Path): The pattern file.

    Returns:
        list[str]: The patterns, blank entries removed.

    Raises:
        OSError: If the file cannot be read.
        tomllib.TOMLDecodeError: If the file is not valid TOML.
        ValueError: If ``patterns`` is missing or not a list of strings.
    """
    with open(path, "rb") as f:
        data = tomllib.load(f)

    patterns = data.get("patterns")
    if not isinstance(patterns, list) or not all(isinstance(p, str) for p in patterns):
        raise ValueError("'patterns' must be a list of strings")
    return [p.strip() for p in patterns if p.strip()]


def matches_pattern(parts: tuple[str, ...], pattern: str, is_dir: bool) -> bool:
    """Checks one built-in style pattern against a root-relative path.

    A trailing slash marks a directory pattern: it matches any intermediate
    segment, and the final segment only when that path is a directory. Other
    patterns are matched with fnmatch against every segment.

    Args:
        parts (tuple[str, ...]): Path segments relative to the owning root.
        pattern (str): The pattern to test.
        is_dir (bool): Whether the full path is a directory.

    Returns:
        bool: True if the pattern excludes the path.
    """
    if pattern.endswith("/"):
        name = pattern.rstrip("/")
        candidates = parts if is_dir else parts[:-1]
        return any(fnmatch.fnmatchcase(part, name) for part in candidates)
    return any(fnmatch.fnmatchcase(part, pattern) for part in parts)


class IgnoreResolver:
    """A reloadable predicate over absolute paths.

    Attributes:
        roots (list[Path]): The configured project roots.
        patterns_file (Path | None): Optional external pattern file.
    """

    def __init__(self, roots: list[Path], patterns_file: Path | None = None):
        self.roots = list(roots)
        self.patterns_file = patterns_file
        self._patterns: list[str] = list(DEFAULT_IGNORES)
        self._project_specs: dict[Path, PathSpec | None] = {}
        self.reload()

    @property
    def patterns(self) -> list[str]:
        """The resolved built-in plus external pattern list."""
        return list(self._patterns)

    def reload(self) -> None:
        """Re-reads the external pattern file and forgets every project matcher.

        Falls back to the built-in list with a warning when the file cannot be
        used; this never raises.
        """
        patterns = list(DEFAULT_IGNORES)
        if self.patterns_file is not None:
            try:
                patterns.extend(load_patterns_file(self.patterns_file))
            except (OSError, tomllib.TOMLDecodeError, ValueError) as e:
                logger.warning(
                    f"Could not load ignore patterns from {self.patterns_file}: {e}. "
                    "Using built-in patterns."
                )
        self._patterns = list(dict.fromkeys(patterns))
        self._project_specs.clear()

    def reload_project(self, project: Path) -> None:
        """Re-reads a single project's ``.gitignore``."""
        self._project_specs[project] = self._load_project_spec(project)
        logger.info(f"[{project.name}] Reloaded {EXCLUDE_FILE}")

    def should_ignore(self, path: Path) -> bool:
        """Decides whether a path is excluded from watching and syncing.

        Args:
            path (Path): An absolute filesystem path.

        Returns:
            bool: True if the path must be ignored.
        """
        path = Path(os.path.abspath(path))
        if GIT_DIR in path.parts:
            return True

        parts = self._relative_parts(path)
        if not parts:
            return False
        is_dir = path.is_dir()
        if any(matches_pattern(parts, p, is_dir) for p in self._patterns):
            return True

        project = resolve_project(path, self.roots)
        if project is None or project == path:
            return False

        spec = self._project_spec(project)
        if spec is None:
            return False
        rel = path.relative_to(project).as_posix()
        if path.is_dir():
            rel += "/"
        return spec.match_file(rel)

    def _relative_parts(self, path: Path) -> tuple[str, ...]:
        # Patterns never apply to a root's own ancestors, nor outside the roots.
        for root in self.roots:
            if path.is_relative_to(root):
                return path.relative_to(root).parts
        return ()

    def _project_spec(self, project: Path) -> PathSpec | None:
        if project not in self._project_specs:
            self._project_specs[project] = self._load_project_spec(project)
        return self._project_specs[project]

    @staticmethod
    def _load_project_spec(project: Path) -> PathSpec | None:
        exclude_file = project / EXCLUDE_FILE
        try:
            lines = exclude_file.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"[{project.name}] Could not read {EXCLUDE_FILE}: {e}")
            return None
        return PathSpec.from_lines("gitwildmatch", lines.splitlines())
