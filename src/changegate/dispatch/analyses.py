"""Adapters that expose external analyses to the dispatcher.

An analysis is anything with a ``name`` and an
``analyze(file, diff_content, deadline) -> list[Finding]`` method.
Failure is signalled by raising; the dispatcher turns exceptions into
degraded results.
"""

from __future__ import annotations

import importlib
import json
import os
import subprocess
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from changegate.errors import AnalysisFailed, AnalysisTimeout, ConfigInvalid
from changegate.types import ChangedFile, Finding

if TYPE_CHECKING:
    from changegate.dispatch.deadline import Deadline
    from changegate.policy.config import AnalysisSpec


class Analysis(Protocol):
    name: str

    def analyze(self, file: ChangedFile, diff_content: str, deadline: Deadline) -> list[Finding]: ...


AnalyzeFn = Callable[[ChangedFile, str], list[Finding]]


@dataclass(frozen=True)
class FunctionAnalysis:
    """Wrap a plain ``fn(file, diff_content)`` callable."""

    name: str
    fn: AnalyzeFn

    def analyze(self, file: ChangedFile, diff_content: str, deadline: Deadline) -> list[Finding]:
        deadline.check()
        return self.fn(file, diff_content)


def load_callable(target: str) -> AnalyzeFn:
    """Import ``package.module:function``."""
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigInvalid(f"analysis callable must look like 'module:function', got {target!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigInvalid(f"cannot import analysis module {module_name!r}: {exc}") from exc
    fn = module
    for part in attr.split("."):
        fn = getattr(fn, part, None)
        if fn is None:
            raise ConfigInvalid(f"analysis callable {target!r} not found")
    if not callable(fn):
        raise ConfigInvalid(f"analysis target {target!r} is not callable")
    return fn  # type: ignore[return-value]


@dataclass(frozen=True)
class CommandAnalysis:
    """Run an external command per file.

    The diff is written to stdin; ``{path}`` in the argument list is
    replaced with the repository-relative path. The command must print a
    JSON list of findings (or ``{"findings": [...]}``) and exit 0.
    """

    name: str
    argv: tuple[str, ...]
    cwd: Path
    timeout_seconds: float | None = None

    def analyze(self, file: ChangedFile, diff_content: str, deadline: Deadline) -> list[Finding]:
        deadline.check()
        timeout = _effective_timeout(self.timeout_seconds, deadline.remaining())
        argv = [arg.replace("{path}", file.path) for arg in self.argv]
        env = dict(os.environ)
        env.update(
            {
                "CHANGEGATE_PATH": file.path,
                "CHANGEGATE_KIND": file.kind.value,
                "CHANGEGATE_LANGUAGE": file.language,
            }
        )
        try:
            completed = subprocess.run(
                argv,
                cwd=self.cwd,
                input=diff_content,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
                env=env,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise AnalysisTimeout("timeout") from exc
        except OSError as exc:
            raise AnalysisFailed(f"cannot run {argv[0]!r}: {exc}") from exc

        if completed.returncode != 0:
            detail = (completed.stderr or completed.stdout).strip().splitlines()
            raise AnalysisFailed(
                f"exit status {completed.returncode}" + (f": {detail[-1]}" if detail else "")
            )
        return parse_findings_json(completed.stdout, path=file.path, analysis=self.name)


def parse_findings_json(text: str, *, path: str, analysis: str) -> list[Finding]:
    """Parse analysis stdout into findings; anything unexpected is malformed output."""
    try:
        payload: Any = json.loads(text or "[]")
    except json.JSONDecodeError as exc:
        raise AnalysisFailed(f"malformed output: {exc}") from exc
    if isinstance(payload, dict):
        payload = payload.get("findings")
    if not isinstance(payload, list):
        raise AnalysisFailed("malformed output: expected a list of findings")
    findings: list[Finding] = []
    for item in payload:
        if not isinstance(item, dict):
            raise AnalysisFailed("malformed output: finding is not an object")
        try:
            findings.append(Finding.from_dict(item, path=path, analysis=analysis))
        except (KeyError, TypeError, ValueError) as exc:
            raise AnalysisFailed(f"malformed output: {exc}") from exc
    return findings


def _effective_timeout(own: float | None, remaining: float | None) -> float | None:
    candidates = [value for value in (own, remaining) if value is not None]
    return min(candidates) if candidates else None


def build_registry(specs: Mapping[str, AnalysisSpec], repo_root: Path) -> dict[str, Analysis]:
    """Instantiate configured analyses by name."""
    registry: dict[str, Analysis] = {}
    for name in sorted(specs):
        spec = specs[name]
        if spec.command:
            registry[name] = CommandAnalysis(
                name=name,
                argv=spec.command,
                cwd=repo_root,
                timeout_seconds=spec.timeout_seconds,
            )
        elif spec.callable:
            registry[name] = FunctionAnalysis(name=name, fn=load_callable(spec.callable))
    return registry
