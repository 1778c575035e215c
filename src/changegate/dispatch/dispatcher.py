"""Concurrent fan-out/fan-in of analyses over cache-miss files."""

from __future__ import annotations

import concurrent.futures
import dataclasses
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from changegate.errors import AnalysisFailed, AnalysisTimeout
from changegate.types import (
    AnalysisFailure,
    AnalysisOk,
    AnalysisResult,
    CacheEntry,
    ChangedFile,
    Finding,
)

if TYPE_CHECKING:
    from changegate.cache.store import CacheStore
    from changegate.dispatch.analyses import Analysis
    from changegate.dispatch.deadline import Deadline

logger = logging.getLogger(__name__)

TIMEOUT_REASON = "timeout"


@dataclass(frozen=True)
class DispatchJob:
    """Analyses still needed for one file, plus its valid cache entry if any."""

    file: ChangedFile
    analyses: tuple[str, ...]
    cached: CacheEntry | None = None


@dataclass
class DispatchResult:
    """Fan-in of every task result; failures are never dropped."""

    results: list[AnalysisResult] = field(default_factory=list)

    @property
    def failures(self) -> list[AnalysisFailure]:
        return [item for item in self.results if isinstance(item, AnalysisFailure)]

    def findings_for(self, path: str) -> list[Finding]:
        findings: list[Finding] = []
        for item in self.results:
            if isinstance(item, AnalysisOk) and item.path == path:
                findings.extend(item.findings)
        return findings

    def completed_for(self, path: str) -> set[str]:
        return {item.analysis for item in self.results if isinstance(item, AnalysisOk) and item.path == path}


class AnalysisDispatcher:
    """Run one task per (file, analysis) pair on a bounded thread pool."""

    def __init__(
        self,
        registry: Mapping[str, Analysis],
        *,
        max_workers: int | None = None,
        store: CacheStore | None = None,
    ) -> None:
        self._registry = dict(registry)
        self._max_workers = max_workers
        self._store = store

    def dispatch(self, jobs: Sequence[DispatchJob], deadline: Deadline) -> DispatchResult:
        """Run every job's analyses and merge the results.

        Results are ordered by job, then by the job's analysis order, so the
        outcome does not depend on completion order. Tasks unfinished at the
        deadline are cancelled and recorded as timeouts; their files' cache
        entries are not touched by them.
        """
        outcomes: dict[tuple[str, str], AnalysisResult] = {}
        tasks: list[tuple[ChangedFile, str, Analysis]] = []

        for job in jobs:
            for name in job.analyses:
                analysis = self._registry.get(name)
                if analysis is None:
                    outcomes[(job.file.path, name)] = AnalysisFailure(
                        path=job.file.path,
                        analysis=name,
                        reason="analysis not registered",
                    )
                    continue
                tasks.append((job.file, name, analysis))

        if tasks:
            logger.debug("Dispatching %d task(s) over %d file(s)", len(tasks), len(jobs))
            outcomes.update(self._run_tasks(tasks, deadline))

        result = DispatchResult(
            results=[outcomes[(job.file.path, name)] for job in jobs for name in job.analyses]
        )
        for failure in result.failures:
            logger.warning("%s", failure.describe())

        if self._store is not None:
            _update_cache(self._store, jobs, result)
        return result

    def _run_tasks(
        self,
        tasks: list[tuple[ChangedFile, str, Analysis]],
        deadline: Deadline,
    ) -> dict[tuple[str, str], AnalysisResult]:
        outcomes: dict[tuple[str, str], AnalysisResult] = {}
        executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=self._max_workers,
            thread_name_prefix="changegate-analysis",
        )
        pending: set[concurrent.futures.Future[AnalysisResult]] = set()
        try:
            futures = {
                executor.submit(_run_one, analysis, file, name, deadline): (file.path, name)
                for file, name, analysis in tasks
            }
            done, pending = concurrent.futures.wait(futures, timeout=deadline.remaining())
            for future in done:
                outcomes[futures[future]] = future.result()
            if pending:
                deadline.cancel()
                for future in pending:
                    future.cancel()
                    path, name = futures[future]
                    outcomes[(path, name)] = AnalysisFailure(path=path, analysis=name, reason=TIMEOUT_REASON)
        finally:
            executor.shutdown(wait=not pending, cancel_futures=True)
        return outcomes


def _update_cache(store: CacheStore, jobs: Sequence[DispatchJob], result: DispatchResult) -> None:
    for job in jobs:
        fingerprint = job.file.fingerprint
        completed = result.completed_for(job.file.path)
        if fingerprint is None or not completed:
            continue
        kept_findings: list[Finding] = []
        kept_analyses: set[str] = set()
        if job.cached is not None and job.cached.fingerprint == fingerprint:
            kept_analyses = set(job.cached.analyses) - completed
            kept_findings = [item for item in job.cached.findings if item.analysis in kept_analyses]
        store.put(
            job.file.path,
            fingerprint,
            [*kept_findings, *result.findings_for(job.file.path)],
            kept_analyses | completed,
        )


def _run_one(analysis: Analysis, file: ChangedFile, name: str, deadline: Deadline) -> AnalysisResult:
    if deadline.expired:
        return AnalysisFailure(path=file.path, analysis=name, reason=TIMEOUT_REASON)
    try:
        produced = analysis.analyze(file, file.diff, deadline)
    except (AnalysisTimeout, TimeoutError):
        return AnalysisFailure(path=file.path, analysis=name, reason=TIMEOUT_REASON)
    except AnalysisFailed as exc:
        return AnalysisFailure(path=file.path, analysis=name, reason=str(exc))
    except Exception as exc:
        logger.debug("Analysis %s crashed on %s", name, file.path, exc_info=True)
        return AnalysisFailure(path=file.path, analysis=name, reason=f"crashed: {type(exc).__name__}: {exc}")

    if not isinstance(produced, (list, tuple)) or not all(isinstance(item, Finding) for item in produced):
        return AnalysisFailure(path=file.path, analysis=name, reason="malformed output")

    findings = tuple(
        dataclasses.replace(item, path=item.path or file.path, analysis=name) for item in produced
    )
    return AnalysisOk(path=file.path, analysis=name, findings=findings)
