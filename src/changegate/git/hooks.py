"""Git hook installation and resolution of what a push sends."""

from __future__ import annotations

import logging
import os
import stat
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from changegate.git.classifier import EMPTY_TREE, resolve_repo_root
from changegate.git.exec import run_git

logger = logging.getLogger(__name__)

HOOKS_DIR = ".github/hooks"
HOOK_NAME = "pre-push"
DEFAULT_REMOTE = "origin"
VALID_METHODS = ("symlink", "copy", "hooks-path")

PRE_PUSH_SCRIPT = """#!/bin/sh
# changegate pre-push hook: review the commits being pushed.
# git passes "<local ref> <local sha> <remote ref> <remote sha>" lines on stdin.
# Bypass once with: git push --no-verify
exec changegate check --hook pre-push --remote "$1"
"""


@dataclass(frozen=True)
class HookInstallResult:
    method: str
    hook_path: Path
    backup_path: Path | None


@dataclass(frozen=True)
class PushRef:
    """One line of the pre-push hook's standard input."""

    local_ref: str
    local_sha: str
    remote_ref: str
    remote_sha: str

    @property
    def deletes(self) -> bool:
        return _is_null(self.local_sha)

    @property
    def creates(self) -> bool:
        return _is_null(self.remote_sha)


@dataclass(frozen=True)
class PushRange:
    """Commits one pushed ref sends: ``base..head``."""

    ref: str
    base: str
    head: str


def _is_null(sha: str) -> bool:
    return set(sha) == {"0"}


def install_pre_push_hook(repo_root: Path, *, method: str = "symlink") -> HookInstallResult:
    """Install the pre-push hook.

    Every method first writes the shared hook to ``.github/hooks/pre-push``.
    ``symlink`` links the repository's own hook to it, ``copy`` writes a
    standalone copy there, and both keep a differing existing hook as
    ``pre-push.backup``. ``hooks-path`` points ``core.hooksPath`` at the
    shared directory instead.
    """
    if method not in VALID_METHODS:
        raise ValueError(f"Unknown install method: {method!r}. Valid methods: {', '.join(VALID_METHODS)}")
    root = resolve_repo_root(repo_root)

    shared = root / HOOKS_DIR / HOOK_NAME
    _write_script(shared)
    if method == "hooks-path":
        run_git(["config", "core.hooksPath", HOOKS_DIR], repo_root=root)
        logger.info("Pointed core.hooksPath at %s", HOOKS_DIR)
        return HookInstallResult(method=method, hook_path=shared, backup_path=None)

    hook_path = _git_hooks_dir(root) / HOOK_NAME
    hook_path.parent.mkdir(parents=True, exist_ok=True)
    if method == "symlink":
        target = os.path.relpath(shared, hook_path.parent)
        backup = _backup_existing(hook_path, keep=lambda: hook_path.is_symlink() and os.readlink(hook_path) == target)
        if backup is not None or not hook_path.is_symlink():
            hook_path.unlink(missing_ok=True)
            hook_path.symlink_to(target)
    else:
        backup = _backup_existing(hook_path, keep=lambda: _is_current_copy(hook_path))
        _write_script(hook_path)

    logger.info("Installed %s hook at %s (%s)", HOOK_NAME, hook_path, method)
    return HookInstallResult(method=method, hook_path=hook_path, backup_path=backup)


def _git_hooks_dir(root: Path) -> Path:
    hooks_dir = Path(run_git(["rev-parse", "--git-path", "hooks"], repo_root=root).stdout.strip())
    if not hooks_dir.is_absolute():
        hooks_dir = root / hooks_dir
    return hooks_dir


def _is_current_copy(hook_path: Path) -> bool:
    return not hook_path.is_symlink() and hook_path.read_text(encoding="utf-8", errors="replace") == PRE_PUSH_SCRIPT


def _backup_existing(hook_path: Path, *, keep: Callable[[], bool]) -> Path | None:
    if not (hook_path.exists() or hook_path.is_symlink()) or keep():
        return None
    backup_path = hook_path.with_name(f"{hook_path.name}.backup")
    hook_path.replace(backup_path)
    logger.warning("Existing %s hook moved to %s", hook_path.name, backup_path)
    return backup_path


def _write_script(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(PRE_PUSH_SCRIPT, encoding="utf-8")
    mode = path.stat().st_mode
    path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


def parse_push_refs(text: str) -> list[PushRef]:
    """Parse the pre-push hook's standard input.

    Raises:
        ValueError: If a non-blank line does not have four fields
    """
    refs: list[PushRef] = []
    for line in text.splitlines():
        fields = line.split()
        if not fields:
            continue
        if len(fields) != 4:
            raise ValueError(f"Malformed pre-push input line: {line!r}")
        refs.append(PushRef(*fields))
    return refs


def push_ranges(repo_root: Path, refs: list[PushRef], *, remote: str = DEFAULT_REMOTE) -> list[PushRange]:
    """Commit range each pushed ref sends; deletions send nothing."""
    ranges: list[PushRange] = []
    for ref in refs:
        if ref.deletes:
            logger.debug("Skipping deletion of %s", ref.remote_ref)
            continue
        if not ref.creates and _is_commit(repo_root, ref.remote_sha):
            base = ref.remote_sha
        else:
            base = unpushed_base(repo_root, ref.local_sha, remote=remote)
        ranges.append(PushRange(ref=ref.local_ref, base=base, head=ref.local_sha))
    return ranges


def unpushed_base(repo_root: Path, head: str, *, remote: str = DEFAULT_REMOTE) -> str:
    """Parent of the oldest commit reachable from ``head`` but not from ``remote``.

    ``head`` itself when everything is already on the remote, the empty tree
    when the whole history is new.
    """
    result = run_git(
        ["rev-list", "--topo-order", "--reverse", head, "--not", f"--remotes={remote}"],
        repo_root=repo_root,
        check=False,
    )
    if result.returncode != 0:
        return EMPTY_TREE
    commits = result.stdout.split()
    if not commits:
        return head
    parents = run_git(["rev-list", "--parents", "-n", "1", commits[0]], repo_root=repo_root).stdout.split()
    return parents[1] if len(parents) > 1 else EMPTY_TREE


def resolve_push_base(repo_root: Path, *, remote: str = DEFAULT_REMOTE) -> str:
    """Upstream of the current branch, else where it forked from ``remote``."""
    result = run_git(
        ["rev-parse", "--abbrev-ref", "--symbolic-full-name", "@{upstream}"],
        repo_root=repo_root,
        check=False,
    )
    upstream = result.stdout.strip()
    if result.returncode == 0 and upstream:
        return upstream
    return unpushed_base(repo_root, "HEAD", remote=remote)


def _is_commit(repo_root: Path, sha: str) -> bool:
    result = run_git(["cat-file", "-e", f"{sha}^{{commit}}"], repo_root=repo_root, check=False)
    return result.returncode == 0
