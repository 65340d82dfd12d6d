from pathlib import Path

import pytest

from gitea_autosync.discovery import discover, discover_all, resolve_project
from gitea_autosync.exceptions import DiscoveryError


@pytest.fixture
def root(tmp_path: Path) -> Path:
    path = tmp_path / "projects"
    for name in ("alpha", "beta", ".hidden"):
        (path / name).mkdir(parents=True)
    (path / "notes.txt").write_text("not a project")
    (path / ".DS_Store").write_text("")
    return path


def test_discover_lists_visible_directories(root: Path) -> None:
    assert sorted(discover(root)) == [root / "alpha", root / "beta"]


def test_discover_missing_root_is_empty(tmp_path: Path) -> None:
    assert discover(tmp_path / "absent") == []


def test_discover_unreadable_root_raises(tmp_path: Path) -> None:
    not_a_dir = tmp_path / "file"
    not_a_dir.write_text("")

    with pytest.raises(DiscoveryError, match="Cannot list"):
        discover(not_a_dir)


def test_discover_all_skips_failing_roots(
    root: Path, tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    broken = tmp_path / "broken"
    broken.write_text("")

    projects = discover_all([broken, root, tmp_path / "absent"])

    assert sorted(projects) == [root / "alpha", root / "beta"]
    assert "DISCOVERY ERROR: Cannot list" in caplog.text


def test_discover_all_concatenates_roots(tmp_path: Path) -> None:
    first = tmp_path / "one"
    second = tmp_path / "two"
    (first / "a").mkdir(parents=True)
    (second / "b").mkdir(parents=True)

    assert discover_all([first, second]) == [first / "a", second / "b"]


@pytest.mark.parametrize(
    "relative, expected",
    [
        ("alpha", "alpha"),
        ("alpha/src/main.py", "alpha"),
        ("beta/.gitignore", "beta"),
        ("alpha/../beta/x.txt", "beta"),
    ],
)
def test_resolve_project_maps_to_first_segment(
    tmp_path: Path, relative: str, expected: str
) -> None:
    root = tmp_path / "projects"

    assert resolve_project(root / relative, [root]) == root / expected


def test_resolve_project_rejects_root_outside_and_hidden(tmp_path: Path) -> None:
    root = tmp_path / "projects"

    assert resolve_project(root, [root]) is None
    assert resolve_project(tmp_path / "other" / "x.txt", [root]) is None
    assert resolve_project(tmp_path / "projects-old" / "x", [root]) is None
    assert resolve_project(root / ".trash" / "x.txt", [root]) is None


def test_resolve_project_uses_first_matching_root(tmp_path: Path) -> None:
    work = tmp_path / "work"
    clients = tmp_path / "clients"

    assert resolve_project(clients / "acme" / "a.txt", [work, clients]) == (
        clients / "acme"
    )
