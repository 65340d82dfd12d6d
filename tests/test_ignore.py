from pathlib import Path

import pytest

from gitea_autosync.constants import DEFAULT_IGNORES
from gitea_autosync.ignore import IgnoreResolver, load_patterns_file, matches_pattern


@pytest.fixture
def root(tmp_path: Path) -> Path:
    path = tmp_path / "projects"
    (path / "app").mkdir(parents=True)
    return path


@pytest.fixture
def resolver(root: Path) -> IgnoreResolver:
    return IgnoreResolver([root])


def test_git_metadata_is_always_ignored(resolver: IgnoreResolver, root: Path) -> None:
    assert resolver.should_ignore(root / "app" / ".git")
    assert resolver.should_ignore(root / "app" / ".git" / "objects" / "ab" / "cd")
    assert resolver.should_ignore(root / "app" / "vendor" / "lib" / ".git" / "HEAD")


def test_git_metadata_is_ignored_even_outside_roots(
    resolver: IgnoreResolver, tmp_path: Path
) -> None:
    assert resolver.should_ignore(tmp_path / "elsewhere" / ".git" / "config")


def test_directory_patterns_match_intermediate_segments(
    resolver: IgnoreResolver, root: Path
) -> None:
    assert resolver.should_ignore(root / "app" / "node_modules" / "left-pad" / "i.js")
    assert resolver.should_ignore(root / "app" / "src" / "__pycache__" / "m.pyc")
    assert resolver.should_ignore(root / "app" / "dist" / "bundle.js")


def test_directory_pattern_matches_final_segment_only_for_directories(
    resolver: IgnoreResolver, root: Path
) -> None:
    """Verifies 'build/' excludes a build directory but not a file named build."""
    (root / "app" / "build").mkdir()
    (root / "app" / "docs").mkdir()
    (root / "app" / "docs" / "build").write_text("not a directory")

    assert resolver.should_ignore(root / "app" / "build")
    assert not resolver.should_ignore(root / "app" / "docs" / "build")


def test_glob_patterns_match_any_segment(resolver: IgnoreResolver, root: Path) -> None:
    assert resolver.should_ignore(root / "app" / "server.log")
    assert resolver.should_ignore(root / "app" / "scratch.tmp")
    assert resolver.should_ignore(root / "app" / "assets" / ".DS_Store")
    assert not resolver.should_ignore(root / "app" / "logbook.md")
    assert not resolver.should_ignore(root / "app" / "src" / "main.py")


def test_patterns_do_not_apply_to_ancestors_of_a_root(tmp_path: Path) -> None:
    """Verifies a root living under a 'tmp' directory is still watched."""
    root = tmp_path / "tmp" / "projects"
    (root / "app").mkdir(parents=True)
    resolver = IgnoreResolver([root])

    assert not resolver.should_ignore(root / "app" / "main.py")
    assert resolver.should_ignore(root / "app" / "tmp" / "scratch.txt")


def test_project_gitignore_is_honoured(resolver: IgnoreResolver, root: Path) -> None:
    (root / "app" / ".gitignore").write_text("secrets/\n*.key\n!public.key\n")

    assert resolver.should_ignore(root / "app" / "secrets" / "token.txt")
    assert resolver.should_ignore(root / "app" / "certs" / "server.key")
    assert not resolver.should_ignore(root / "app" / "certs" / "public.key")
    assert not resolver.should_ignore(root / "app" / "README.md")


def test_project_gitignore_does_not_leak_between_projects(
    resolver: IgnoreResolver, root: Path
) -> None:
    (root / "other").mkdir()
    (root / "app" / ".gitignore").write_text("*.csv\n")

    assert resolver.should_ignore(root / "app" / "data.csv")
    assert not resolver.should_ignore(root / "other" / "data.csv")


def test_reload_project_picks_up_edits(resolver: IgnoreResolver, root: Path) -> None:
    exclude = root / "app" / ".gitignore"
    exclude.write_text("*.csv\n")
    assert resolver.should_ignore(root / "app" / "data.csv")

    exclude.write_text("*.json\n")
    # Cached until told otherwise.
    assert resolver.should_ignore(root / "app" / "data.csv")

    resolver.reload_project(root / "app")
    assert not resolver.should_ignore(root / "app" / "data.csv")
    assert resolver.should_ignore(root / "app" / "data.json")


def test_external_patterns_are_appended(root: Path, tmp_path: Path) -> None:
    patterns_file = tmp_path / "ignore.toml"
    patterns_file.write_text('patterns = ["*.psd", "renders/", "node_modules/"]\n')

    resolver = IgnoreResolver([root], patterns_file)

    assert resolver.patterns[: len(DEFAULT_IGNORES)] == DEFAULT_IGNORES
    assert resolver.patterns.count("node_modules/") == 1
    assert resolver.should_ignore(root / "app" / "cover.psd")
    assert resolver.should_ignore(root / "app" / "renders" / "frame1.png")


@pytest.mark.parametrize(
    "content",
    [
        "patterns = [",
        'patterns = "*.psd"',
        "other = 1",
        "patterns = [1, 2]",
    ],
)
def test_unusable_patterns_file_falls_back_to_builtins(
    root: Path,
    tmp_path: Path,
    caplog: pytest.LogCaptureFixture,
    content: str,
) -> None:
    patterns_file = tmp_path / "ignore.toml"
    patterns_file.write_text(content)

    resolver = IgnoreResolver([root], patterns_file)

    assert resolver.patterns == DEFAULT_IGNORES
    assert "Using built-in patterns" in caplog.text


def test_missing_patterns_file_falls_back_to_builtins(
    root: Path, tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    resolver = IgnoreResolver([root], tmp_path / "absent.toml")

    assert resolver.patterns == DEFAULT_IGNORES
    assert "Could not load ignore patterns" in caplog.text


def test_reload_is_idempotent(root: Path, tmp_path: Path) -> None:
    patterns_file = tmp_path / "ignore.toml"
    patterns_file.write_text('patterns = ["*.psd"]\n')
    resolver = IgnoreResolver([root], patterns_file)

    first = resolver.patterns
    resolver.reload()
    resolver.reload()

    assert resolver.patterns == first


def test_reload_applies_new_patterns(root: Path, tmp_path: Path) -> None:
    patterns_file = tmp_path / "ignore.toml"
    patterns_file.write_text('patterns = ["*.psd"]\n')
    resolver = IgnoreResolver([root], patterns_file)
    assert not resolver.should_ignore(root / "app" / "clip.mov")

    patterns_file.write_text('patterns = ["*.mov"]\n')
    resolver.reload()

    assert resolver.should_ignore(root / "app" / "clip.mov")
    assert not resolver.should_ignore(root / "app" / "cover.psd")


def test_load_patterns_file_strips_blanks(tmp_path: Path) -> None:
    patterns_file = tmp_path / "ignore.toml"
    patterns_file.write_text('patterns = [" *.bak ", "", "out/"]\n')

    assert load_patterns_file(patterns_file) == ["*.bak", "out/"]


@pytest.mark.parametrize(
    "parts, pattern, is_dir, expected",
    [
        (("a", "node_modules", "x.js"), "node_modules/", False, True),
        (("a", "node_modules"), "node_modules/", True, True),
        (("a", "node_modules"), "node_modules/", False, False),
        (("a", "b.log"), "*.log", False, True),
        (("a", "b.txt"), "*.log", False, False),
    ],
)
def test_matches_pattern(
    parts: tuple[str, ...], pattern: str, is_dir: bool, expected: bool
) -> None:
    assert matches_pattern(parts, pattern, is_dir) is expected
