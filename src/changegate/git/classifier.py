"""Change classification from git working-tree state."""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Iterable
from pathlib import Path

from changegate.errors import ChangeGateError, NotAVersionedTree
from changegate.git.exec import ExecError, read_blob, run_git
from changegate.types import ChangedFile, ChangeKind

logger = logging.getLogger(__name__)

# Object id of the empty tree; baseline for repositories without commits.
EMPTY_TREE = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"

DEFAULT_MAX_FILE_LINES = 500

# Cache and report artifacts live here and are never part of a change set.
STATE_DIR = ".changegate"

LANGUAGE_BY_SUFFIX: dict[str, str] = {
    ".c": "c",
    ".cc": "cpp",
    ".cpp": "cpp",
    ".cs": "csharp",
    ".go": "go",
    ".h": "c",
    ".java": "java",
    ".js": "javascript",
    ".jsx": "javascript",
    ".kt": "kotlin",
    ".md": "markdown",
    ".php": "php",
    ".py": "python",
    ".rb": "ruby",
    ".rs": "rust",
    ".sh": "shell",
    ".sql": "sql",
    ".swift": "swift",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".yaml": "yaml",
    ".yml": "yaml",
}

_STATUS_KINDS: dict[str, ChangeKind] = {
    "A": ChangeKind.ADDED,
    "C": ChangeKind.ADDED,
    "D": ChangeKind.DELETED,
    "M": ChangeKind.MODIFIED,
    "R": ChangeKind.RENAMED,
    "T": ChangeKind.MODIFIED,
}


def resolve_repo_root(start: Path) -> Path:
    """Resolve the git top-level directory containing ``start``."""
    probe = start.resolve()
    try:
        out = run_git(["rev-parse", "--show-toplevel"], repo_root=probe)
    except ExecError as exc:
        raise NotAVersionedTree(f"No git repository found from {probe}: {exc}") from exc
    root = out.stdout.strip()
    if not root:
        raise NotAVersionedTree(f"No git repository found from {probe}: empty output")
    return Path(root).resolve()


def resolve_baseline(repo_root: Path, base: str | None = None) -> str:
    """Return the revision changes are measured against.

    ``HEAD`` by default, the empty tree when the repository has no commits yet
    or when ``base`` is the empty tree itself.
    """
    if base == EMPTY_TREE:
        return EMPTY_TREE
    if base:
        result = run_git(["rev-parse", "--verify", "--quiet", f"{base}^{{commit}}"], repo_root=repo_root, check=False)
        if result.returncode != 0 or not result.stdout.strip():
            raise ChangeGateError(f"Unknown baseline revision: {base}", "BASELINE_UNKNOWN")
        return result.stdout.strip()

    result = run_git(["rev-parse", "--verify", "--quiet", "HEAD^{commit}"], repo_root=repo_root, check=False)
    if result.returncode != 0 or not result.stdout.strip():
        return EMPTY_TREE
    return result.stdout.strip()


def parse_name_status(output: str) -> list[tuple[str, str, str | None]]:
    """Parse ``git diff --name-status -z`` output.

    Returns:
        List of (status letter, path, previous path for renames/copies)
    """
    tokens = output.split("\0")
    parsed: list[tuple[str, str, str | None]] = []
    index = 0
    while index < len(tokens):
        status = tokens[index].strip()
        if not status:
            index += 1
            continue
        letter = status[0]
        if letter in ("R", "C"):
            if index + 2 >= len(tokens):
                break
            parsed.append((letter, tokens[index + 2], tokens[index + 1]))
            index += 3
        else:
            if index + 1 >= len(tokens):
                break
            parsed.append((letter, tokens[index + 1], None))
            index += 2
    return parsed


def split_nul(output: str) -> list[str]:
    return [item for item in output.split("\0") if item]


def fingerprint_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def count_lines(text: str) -> int:
    if not text:
        return 0
    return text.count("\n") + (0 if text.endswith("\n") else 1)


def language_for(path: str) -> str:
    suffix = Path(path).suffix.lower()
    if not suffix:
        return "unknown"
    return LANGUAGE_BY_SUFFIX.get(suffix, suffix.lstrip("."))


def resolve_commit(repo_root: Path, revision: str) -> str:
    result = run_git(["rev-parse", "--verify", "--quiet", f"{revision}^{{commit}}"], repo_root=repo_root, check=False)
    if result.returncode != 0 or not result.stdout.strip():
        raise ChangeGateError(f"Unknown revision: {revision}", "BASELINE_UNKNOWN")
    return result.stdout.strip()


def classify_changes(
    repo_root: Path,
    *,
    base: str | None = None,
    head: str | None = None,
    max_file_lines: int = DEFAULT_MAX_FILE_LINES,
    ignore: Iterable[str] = (),
) -> list[ChangedFile]:
    """Return changed files relative to the baseline, ordered by path.

    Without ``head`` the working tree is diffed directly against the
    baseline, so staged and unstaged edits of one path are a single logical
    change, and untracked files are included with their full content as the
    diff. With ``head`` only the committed range ``base..head`` is
    classified and file content comes from ``head``, never the working tree.

    Paths under ``.changegate/`` and paths equal to or below an entry of
    ``ignore`` are skipped.

    Raises:
        NotAVersionedTree: If ``repo_root`` is not inside a git repository
    """
    root = resolve_repo_root(repo_root)
    baseline = resolve_baseline(root, base)
    target = resolve_commit(root, head) if head else None

    skipped = tuple(item.strip("/") for item in ignore if item.strip("/"))
    changes: dict[str, ChangedFile] = {}

    revisions = [baseline, target] if target else [baseline]
    name_status = run_git(["diff", "--name-status", "-M", "-z", *revisions], repo_root=root).stdout
    for letter, path, old_path in parse_name_status(name_status):
        if _is_internal(path, skipped):
            continue
        kind = _STATUS_KINDS.get(letter, ChangeKind.MODIFIED)
        changes[path] = _build_changed_file(
            root,
            path,
            kind,
            revisions=revisions,
            old_path=old_path,
            max_file_lines=max_file_lines,
        )

    if target is None:
        untracked = run_git(["ls-files", "--others", "--exclude-standard", "-z"], repo_root=root).stdout
        for path in split_nul(untracked):
            if path in changes or _is_internal(path, skipped):
                continue
            changes[path] = _build_changed_file(
                root,
                path,
                ChangeKind.UNTRACKED,
                revisions=revisions,
                old_path=None,
                max_file_lines=max_file_lines,
            )

    ordered = [changes[path] for path in sorted(changes)]
    logger.debug("Classified %d changed file(s) in %s", len(ordered), "..".join(revisions))
    return ordered


def _build_changed_file(
    root: Path,
    path: str,
    kind: ChangeKind,
    *,
    revisions: list[str],
    old_path: str | None,
    max_file_lines: int,
) -> ChangedFile:
    if kind is ChangeKind.DELETED:
        diff = _git_diff(root, revisions, [path])
        return ChangedFile(
            path=path,
            kind=kind,
            fingerprint=None,
            line_count=0,
            language=language_for(path),
            diff=diff,
        )

    if len(revisions) == 2:
        data = read_blob(root, revisions[1], path)
    else:
        data = _read_worktree_bytes(root / path)
    content = data.decode("utf-8", errors="replace")
    line_count = count_lines(content)

    if kind in (ChangeKind.ADDED, ChangeKind.UNTRACKED):
        diff = content
    else:
        diff = _git_diff(root, revisions, [old_path, path] if old_path else [path])

    oversized = max_file_lines > 0 and line_count > max_file_lines
    if oversized:
        logger.info("%s has %d lines (limit %d); flagged for manual review", path, line_count, max_file_lines)

    return ChangedFile(
        path=path,
        kind=kind,
        fingerprint=fingerprint_bytes(data),
        line_count=line_count,
        language=language_for(path),
        diff=diff,
        oversized=oversized,
        old_path=old_path,
    )


def _is_internal(path: str, skipped: tuple[str, ...]) -> bool:
    return any(path == item or path.startswith(f"{item}/") for item in (STATE_DIR, *skipped))


def _git_diff(root: Path, revisions: list[str], paths: list[str]) -> str:
    return run_git(["diff", "-M", *revisions, "--", *paths], repo_root=root).stdout


def _read_worktree_bytes(path: Path) -> bytes:
    if not path.is_file():
        return b""
    return path.read_bytes()
