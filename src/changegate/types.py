"""Change gate domain types."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ChangeKind(str, Enum):
    """How a path differs from the baseline."""

    ADDED = "added"
    MODIFIED = "modified"
    RENAMED = "renamed"
    DELETED = "deleted"
    UNTRACKED = "untracked"


class Severity(str, Enum):
    """Finding severity, most severe first."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    INFO = "INFO"

    @property
    def rank(self) -> int:
        """Sort rank; 0 is the most severe."""
        return SEVERITY_ORDER.index(self)


SEVERITY_ORDER: tuple[Severity, ...] = (
    Severity.CRITICAL,
    Severity.HIGH,
    Severity.MEDIUM,
    Severity.LOW,
    Severity.INFO,
)


class Mode(str, Enum):
    """Global enforcement stance."""

    STRICT = "strict"
    ADVISORY = "advisory"
    HYBRID = "hybrid"
    EDUCATIONAL = "educational"


class Action(str, Enum):
    """What a finding does to the gate."""

    BLOCK = "block"
    WARN = "warn"
    INFO = "info"


class Outcome(str, Enum):
    """Terminal gate outcome."""

    ALLOW = "ALLOW"
    WARN = "WARN"
    BLOCK = "BLOCK"


@dataclass(frozen=True)
class ChangedFile:
    """One changed artifact in the current invocation."""

    path: str
    kind: ChangeKind
    fingerprint: str | None
    line_count: int
    language: str
    diff: str = field(default="", repr=False)
    oversized: bool = False
    old_path: str | None = None

    @property
    def analyzable(self) -> bool:
        return self.kind is not ChangeKind.DELETED and not self.oversized


@dataclass(frozen=True)
class PathRule:
    """Declarative critical-path rule."""

    pattern: str
    label: str
    analyses: tuple[str, ...] = ()
    block_without_review: bool = False


@dataclass(frozen=True)
class Finding:
    """Single issue reported by one analysis for one file."""

    path: str
    line: int
    severity: Severity
    category: str
    message: str
    analysis: str = ""

    def to_dict(self) -> dict[str, object]:
        return {
            "path": self.path,
            "line": self.line,
            "severity": self.severity.value,
            "category": self.category,
            "message": self.message,
            "analysis": self.analysis,
        }

    @classmethod
    def from_dict(cls, data: dict, *, path: str | None = None, analysis: str | None = None) -> Finding:
        """Build a finding from a mapping, filling path/analysis when absent."""
        severity = Severity(str(data["severity"]).strip().upper())
        return cls(
            path=str(data.get("path") or path or ""),
            line=int(data.get("line", 0)),
            severity=severity,
            category=str(data.get("category", "general")),
            message=str(data.get("message", "")),
            analysis=str(analysis if analysis is not None else data.get("analysis", "")),
        )

    def describe(self) -> str:
        source = f" [{self.analysis}]" if self.analysis else ""
        return f"{self.severity.value} {self.category} at {self.path}:{self.line}: {self.message}{source}"


@dataclass(frozen=True)
class CacheEntry:
    """Cached findings for one path, valid while the fingerprint matches."""

    path: str
    fingerprint: str
    findings: tuple[Finding, ...]
    analyses: frozenset[str]
    timestamp: float

    def to_dict(self) -> dict[str, object]:
        return {
            "fingerprint": self.fingerprint,
            "findings": [item.to_dict() for item in self.findings],
            "analyses": sorted(self.analyses),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, path: str, data: dict) -> CacheEntry:
        return cls(
            path=path,
            fingerprint=str(data["fingerprint"]),
            findings=tuple(Finding.from_dict(item, path=path) for item in data.get("findings", [])),
            analyses=frozenset(str(name) for name in data.get("analyses", [])),
            timestamp=float(data.get("timestamp", 0.0)),
        )


@dataclass(frozen=True)
class AnalysisOk:
    """Successful analysis task."""

    path: str
    analysis: str
    findings: tuple[Finding, ...]


@dataclass(frozen=True)
class AnalysisFailure:
    """Failed analysis task (crash, timeout, malformed output)."""

    path: str
    analysis: str
    reason: str

    def describe(self) -> str:
        return f"analysisFailed: {self.analysis} on {self.path} ({self.reason})"


AnalysisResult = AnalysisOk | AnalysisFailure


@dataclass(frozen=True)
class FileReview:
    """Everything the policy evaluator knows about one changed file."""

    file: ChangedFile
    rules: tuple[PathRule, ...]
    findings: tuple[Finding, ...]
    completed: frozenset[str]


@dataclass(frozen=True)
class GateDecision:
    """Outcome of one gate invocation."""

    outcome: Outcome
    reason: str
    triggering: tuple[Finding, ...] = ()
    findings: tuple[Finding, ...] = ()
    informational: tuple[Finding, ...] = ()
    incomplete_reviews: tuple[str, ...] = ()
