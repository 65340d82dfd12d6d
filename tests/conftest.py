"""Shared fixtures: a scripted git executor and a ready-made configuration."""

from dataclasses import dataclass
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest

from gitea_autosync.config import Config
from gitea_autosync.exceptions import CommandError
from gitea_autosync.git_wrapper import GitRepo, GitResult


@dataclass
class Rule:
    prefix: tuple[str, ...]
    stdout: str = ""
    stderr: str = ""
    error: str | None = None
    returncode: int = 128
    times: int | None = None


class FakeGit:
    """Stands in for ``GitRepo.run``: records commands and replays scripted output.

    Rules are matched by argument prefix, first match wins. A rule with
    ``times`` stops matching once used that many times. Unmatched commands
    succeed with empty output, except ``check-ignore``, which answers "not
    ignored" (exit status 1) like git does for an ordinary file.
    """

    def __init__(self) -> None:
        self.rules: list[Rule] = []
        self.calls: list[tuple[Path, list[str], bool]] = []

    def on(
        self,
        *prefix: str,
        stdout: str = "",
        stderr: str = "",
        error: str | None = None,
        returncode: int = 128,
        times: int | None = None,
    ) -> "FakeGit":
        self.rules.append(Rule(prefix, stdout, stderr, error, returncode, times))
        return self

    @property
    def commands(self) -> list[list[str]]:
        return [args for _, args, _ in self.calls]

    def ran(self, *args: str) -> bool:
        return list(args) in self.commands

    async def __call__(
        self, repo: GitRepo, args: list[str], network: bool = False
    ) -> GitResult:
        self.calls.append((repo.path, list(args), network))
        for rule in self.rules:
            if tuple(args[: len(rule.prefix)]) != rule.prefix:
                continue
            if rule.times is not None:
                if rule.times == 0:
                    continue
                rule.times -= 1
            if rule.error is not None:
                raise CommandError(args, repo.path, rule.error, rule.returncode)
            return GitResult(stdout=rule.stdout, stderr=rule.stderr)
        if args[:1] == ["check-ignore"]:
            raise CommandError(args, repo.path, "exit status 1", 1)
        return GitResult(stdout="", stderr="")


@pytest.fixture
def fake_git(mocker: MagicMock) -> FakeGit:
    """Replaces every git subprocess with a FakeGit recorder."""
    fake = FakeGit()

    async def run(self: GitRepo, args: list[str], network: bool = False) -> Any:
        return await fake(self, args, network)

    mocker.patch.object(GitRepo, "run", run)
    return fake


@pytest.fixture
def conf(tmp_path: Path) -> Config:
    """A valid configuration rooted in a temporary directory."""
    config = Config()
    config.remote.base_url = "https://git.example.com"
    config.remote.token = "secret-token"
    config.remote.owner = "autosync"
    config.sync.projects_root = tmp_path / "projects"
    config.sync.debounce = 0.05
    config.sync.projects_root.mkdir()
    return config
