"""Pytest configuration and fixtures for changegate tests."""

from __future__ import annotations

import subprocess
from collections.abc import Callable
from pathlib import Path

import pytest

from changegate.notify import reset_process_throttle


def _git(cwd: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout.strip()


@pytest.fixture
def git() -> Callable[..., str]:
    """Run a git command in a directory and return stripped stdout."""
    return _git


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """Repository with a single commit containing README.md."""
    repo = tmp_path / "repo"
    repo.mkdir()
    _git(repo, "init", "-q")
    _git(repo, "config", "user.email", "test@example.com")
    _git(repo, "config", "user.name", "Test User")
    _git(repo, "config", "commit.gpgsign", "false")

    (repo / "README.md").write_text("# test\n", encoding="utf-8")
    _git(repo, "add", "README.md")
    _git(repo, "commit", "-q", "-m", "initial")
    _git(repo, "branch", "-M", "main")
    return repo


@pytest.fixture(autouse=True)
def _fresh_reminder_window():
    reset_process_throttle()
    yield
    reset_process_throttle()
