"""Gate invocation: classify -> match -> cache -> dispatch -> evaluate."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from changegate.cache.backend import JsonFileCacheBackend, MemoryCacheBackend
from changegate.cache.store import CacheStore
from changegate.dispatch.analyses import Analysis, build_registry
from changegate.dispatch.deadline import Deadline
from changegate.dispatch.dispatcher import AnalysisDispatcher, DispatchJob
from changegate.git.classifier import classify_changes, resolve_repo_root
from changegate.notify import Notifier, Reminder
from changegate.policy.config import CacheSettings, GateConfig, load_config
from changegate.policy.evaluator import PolicyEvaluator
from changegate.rules.matcher import RuleMatcher
from changegate.types import (
    AnalysisFailure,
    CacheEntry,
    ChangedFile,
    FileReview,
    Finding,
    GateDecision,
    Outcome,
    PathRule,
)

logger = logging.getLogger(__name__)

REPORT_SCHEMA_VERSION = "1.0"
DETERMINISTIC_TIMESTAMP = "1970-01-01T00:00:00Z"


@dataclass
class GateReport:
    """Everything the calling workflow needs from one invocation."""

    repo_root: Path
    base: str | None
    decision: GateDecision
    head: str | None = None
    files: list[ChangedFile] = field(default_factory=list)
    dispatched: list[str] = field(default_factory=list)
    cache_hits: list[str] = field(default_factory=list)
    failures: list[AnalysisFailure] = field(default_factory=list)
    manual_review: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    reminders: list[Reminder] = field(default_factory=list)
    generated_at: str = DETERMINISTIC_TIMESTAMP
    schema_version: str = REPORT_SCHEMA_VERSION

    @property
    def degraded(self) -> bool:
        return bool(self.failures)

    @property
    def outcome(self) -> Outcome:
        return self.decision.outcome

    def to_dict(self) -> dict[str, Any]:
        decision = self.decision
        return {
            "schema_version": self.schema_version,
            "generated_at": self.generated_at,
            "repo_root": str(self.repo_root),
            "base": self.base,
            "head": self.head,
            "decision": {
                "outcome": decision.outcome.value,
                "reason": decision.reason,
                "triggering": [item.to_dict() for item in decision.triggering],
                "incomplete_reviews": list(decision.incomplete_reviews),
            },
            "degraded": self.degraded,
            "failures": [
                {"path": item.path, "analysis": item.analysis, "reason": item.reason}
                for item in self.failures
            ],
            "findings": [item.to_dict() for item in decision.findings],
            "informational": [item.to_dict() for item in decision.informational],
            "files": [
                {
                    "path": item.path,
                    "kind": item.kind.value,
                    "fingerprint": item.fingerprint,
                    "line_count": item.line_count,
                    "language": item.language,
                    "oversized": item.oversized,
                }
                for item in self.files
            ],
            "dispatched": list(self.dispatched),
            "cache_hits": list(self.cache_hits),
            "manual_review": list(self.manual_review),
            "errors": list(self.errors),
        }


@dataclass(frozen=True)
class _FilePlan:
    file: ChangedFile
    rules: tuple[PathRule, ...]
    required: tuple[str, ...]
    entry: CacheEntry | None
    covered: frozenset[str]


def open_cache_store(
    repo_root: Path,
    settings: CacheSettings,
    *,
    clock: Callable[[], float] = time.time,
) -> CacheStore:
    """Open the configured store; a disabled cache is an empty in-memory one."""
    if not settings.enabled:
        return CacheStore(MemoryCacheBackend(), clock=clock)
    cache_path = Path(settings.path)
    if not cache_path.is_absolute():
        cache_path = repo_root / cache_path
    return CacheStore.open(JsonFileCacheBackend(cache_path), clock=clock)


def _state_paths(repo_root: Path, settings: CacheSettings) -> tuple[str, ...]:
    cache_path = Path(settings.path)
    if not cache_path.is_absolute():
        return (cache_path.as_posix(),)
    try:
        return (cache_path.resolve().relative_to(repo_root).as_posix(),)
    except ValueError:
        return ()


def run_gate(
    repo_root: Path,
    *,
    config: GateConfig | None = None,
    config_path: Path | None = None,
    base: str | None = None,
    head: str | None = None,
    exclude: Iterable[str] = (),
    registry: Mapping[str, Analysis] | None = None,
    store: CacheStore | None = None,
    notifier: Notifier | None = None,
    clock: Callable[[], float] = time.time,
    timestamp_mode: str = "deterministic",
) -> GateReport:
    """Run one gate invocation and return its report.

    With ``head`` the committed range ``base..head`` is reviewed instead of
    the working tree. Paths equal to or below an ``exclude`` entry (relative
    to the repository root) are left out of the change set.

    Raises:
        NotAVersionedTree: If ``repo_root`` is not inside a git repository
        ConfigInvalid: If the configuration document is malformed
    """
    root = resolve_repo_root(repo_root)
    cfg = config if config is not None else load_config(root, config_path)

    files = classify_changes(
        root,
        base=base,
        head=head,
        max_file_lines=cfg.limits.max_file_lines,
        ignore=(*_state_paths(root, cfg.cache), *exclude),
    )
    if registry is None:
        registry = build_registry(cfg.analyses, root)
    if store is None:
        store = open_cache_store(root, cfg.cache, clock=clock)
    store.prune({item.path for item in files}, cfg.cache.max_age_days)

    matcher = RuleMatcher.compile(cfg.policy.rules)
    plans: list[_FilePlan] = []
    jobs: list[DispatchJob] = []
    cache_hits: list[str] = []
    manual_review: list[str] = []

    for changed in files:
        rules = matcher.match(changed.path)
        required = matcher.requirements(rules, cfg.policy.default_analyses).analyses
        if not changed.analyzable:
            if changed.oversized:
                manual_review.append(changed.path)
            plans.append(_FilePlan(changed, rules, required, None, frozenset()))
            continue

        entry = store.lookup(changed.path, changed.fingerprint)
        covered = frozenset(entry.analyses & set(required)) if entry is not None else frozenset()
        missing = tuple(name for name in required if name not in covered)
        if missing:
            jobs.append(DispatchJob(file=changed, analyses=missing, cached=entry))
        elif entry is not None and required:
            cache_hits.append(changed.path)
        plans.append(_FilePlan(changed, rules, required, entry, covered))

    logger.info(
        "%d changed file(s): %d to analyze, %d served from cache, %d for manual review",
        len(files),
        len(jobs),
        len(cache_hits),
        len(manual_review),
    )

    dispatcher = AnalysisDispatcher(registry, max_workers=cfg.limits.max_workers, store=store)
    dispatched = dispatcher.dispatch(jobs, Deadline(cfg.limits.timeout_seconds))

    reviews: list[FileReview] = []
    for plan in plans:
        cached: list[Finding] = []
        if plan.entry is not None:
            cached = [item for item in plan.entry.findings if item.analysis in plan.covered]
        path = plan.file.path
        reviews.append(
            FileReview(
                file=plan.file,
                rules=plan.rules,
                findings=tuple([*cached, *dispatched.findings_for(path)]),
                completed=plan.covered | frozenset(dispatched.completed_for(path)),
            )
        )

    decision = PolicyEvaluator(cfg.policy).evaluate(reviews)
    store.flush()

    report = GateReport(
        repo_root=root,
        base=base,
        head=head,
        decision=decision,
        files=files,
        dispatched=[job.file.path for job in jobs],
        cache_hits=cache_hits,
        failures=dispatched.failures,
        manual_review=manual_review,
        errors=[str(exc) for exc in store.errors],
        generated_at=_timestamp(timestamp_mode),
    )

    if notifier is not None:
        already_sent = len(notifier.sent)
        _send_reminders(notifier, report)
        report.reminders = notifier.sent[already_sent:]
    return report


def _send_reminders(notifier: Notifier, report: GateReport) -> None:
    if report.manual_review:
        notifier.remind(
            "manual-review",
            f"{len(report.manual_review)} large file(s) skipped automatic analysis: "
            + ", ".join(report.manual_review),
        )
    elif report.outcome is Outcome.WARN:
        notifier.remind("warnings", "Findings were reported; consider a manual review before merging.")


def _timestamp(mode: str) -> str:
    if mode == "deterministic":
        return DETERMINISTIC_TIMESTAMP
    return datetime.now(UTC).isoformat()
