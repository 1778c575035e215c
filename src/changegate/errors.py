"""Change gate error taxonomy."""

from __future__ import annotations

CONFIG_PARSE_ERROR = "CONFIG_PARSE_ERROR"
CONFIG_SCHEMA_INVALID = "CONFIG_SCHEMA_INVALID"
NOT_A_VERSIONED_TREE = "NOT_A_VERSIONED_TREE"
ANALYSIS_FAILED = "ANALYSIS_FAILED"
CACHE_UNAVAILABLE = "CACHE_UNAVAILABLE"
ANALYSIS_TIMEOUT = "ANALYSIS_TIMEOUT"


class ChangeGateError(RuntimeError):
    """Base class for change gate errors."""

    reason_code: str = "CHANGEGATE_ERROR"

    def __init__(self, message: str, reason_code: str | None = None) -> None:
        super().__init__(message)
        if reason_code is not None:
            self.reason_code = reason_code


class ConfigInvalid(ChangeGateError):
    """Configuration document is malformed. Fatal."""

    reason_code = CONFIG_SCHEMA_INVALID


class NotAVersionedTree(ChangeGateError):
    """No git repository was found. Fatal."""

    reason_code = NOT_A_VERSIONED_TREE


class AnalysisFailed(ChangeGateError):
    """One analysis task failed. Recoverable."""

    reason_code = ANALYSIS_FAILED


class CacheUnavailable(ChangeGateError):
    """Cache storage cannot be read or written. Recoverable, treated as all-miss."""

    reason_code = CACHE_UNAVAILABLE


class AnalysisTimeout(AnalysisFailed):
    """An analysis did not finish before the invocation deadline."""

    reason_code = ANALYSIS_TIMEOUT
