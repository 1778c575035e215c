"""Subprocess wrappers for git: text queries and raw blob reads."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class ExecResult:
    """Outcome of one git invocation."""

    argv: tuple[str, ...]
    cwd: Path
    returncode: int
    stdout: str
    stderr: str


class ExecError(RuntimeError):
    """A git invocation that could not start or exited non-zero in check mode."""

    def __init__(self, result: ExecResult):
        rendered = " ".join(result.argv)
        detail = (result.stderr or result.stdout).strip()
        super().__init__(f"command failed ({result.returncode}): {rendered}\n{detail}")
        self.result = result


def _spawn(argv: list[str], cwd: Path, *, text: bool) -> subprocess.CompletedProcess:
    options = {"encoding": "utf-8", "errors": "replace"} if text else {}
    try:
        return subprocess.run(argv, cwd=cwd, capture_output=True, check=False, **options)
    except OSError as exc:
        raise ExecError(ExecResult(argv=tuple(argv), cwd=cwd, returncode=127, stdout="", stderr=str(exc))) from exc


def run_git(
    args: list[str],
    *,
    repo_root: Path,
    check: bool = True,
) -> ExecResult:
    """Run a git command in ``repo_root`` and decode its output as UTF-8."""
    argv = ["git", *args]
    completed = _spawn(argv, repo_root, text=True)
    result = ExecResult(
        argv=tuple(argv),
        cwd=repo_root.resolve(),
        returncode=completed.returncode,
        stdout=completed.stdout,
        stderr=completed.stderr,
    )
    if check and result.returncode != 0:
        raise ExecError(result)
    return result


def read_blob(repo_root: Path, revision: str, path: str) -> bytes:
    """Exact bytes of ``path`` as committed in ``revision``."""
    argv = ["git", "cat-file", "blob", f"{revision}:{path}"]
    completed = _spawn(argv, repo_root, text=False)
    if completed.returncode != 0:
        stderr = completed.stderr.decode("utf-8", errors="replace")
        raise ExecError(
            ExecResult(argv=tuple(argv), cwd=repo_root, returncode=completed.returncode, stdout="", stderr=stderr)
        )
    return completed.stdout
