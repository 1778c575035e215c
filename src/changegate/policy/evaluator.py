"""Policy evaluation: findings + enforcement policy -> gate decision."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from enum import Enum

from changegate.policy.config import EnforcementPolicy, ScopeOverride
from changegate.rules.matcher import PatternSet, RuleMatcher
from changegate.types import (
    Action,
    ChangeKind,
    FileReview,
    Finding,
    GateDecision,
    Mode,
    Outcome,
    PathRule,
    Severity,
)

logger = logging.getLogger(__name__)

REVIEW_INCOMPLETE_REASON = "required review incomplete"

MODE_ACTIONS: dict[Mode, dict[Severity, Action]] = {
    Mode.STRICT: {
        Severity.CRITICAL: Action.BLOCK,
        Severity.HIGH: Action.BLOCK,
        Severity.MEDIUM: Action.WARN,
        Severity.LOW: Action.WARN,
        Severity.INFO: Action.INFO,
    },
    Mode.HYBRID: {
        Severity.CRITICAL: Action.BLOCK,
        Severity.HIGH: Action.WARN,
        Severity.MEDIUM: Action.WARN,
        Severity.LOW: Action.INFO,
        Severity.INFO: Action.INFO,
    },
    Mode.ADVISORY: {
        Severity.CRITICAL: Action.WARN,
        Severity.HIGH: Action.WARN,
        Severity.MEDIUM: Action.WARN,
        Severity.LOW: Action.INFO,
        Severity.INFO: Action.INFO,
    },
    Mode.EDUCATIONAL: {
        Severity.CRITICAL: Action.INFO,
        Severity.HIGH: Action.INFO,
        Severity.MEDIUM: Action.INFO,
        Severity.LOW: Action.INFO,
        Severity.INFO: Action.INFO,
    },
}


class EvaluatorState(str, Enum):
    EVALUATING = "evaluating"
    DECIDED = "decided"


def merge_findings(reviews: Sequence[FileReview]) -> list[Finding]:
    """Order by path, then severity (most severe first), stable on discovery order."""
    discovered = [finding for review in reviews for finding in review.findings]
    return sorted(discovered, key=lambda item: (item.path, item.severity.rank))


class PolicyEvaluator:
    """Evaluate one invocation's findings. Decides exactly once."""

    def __init__(self, policy: EnforcementPolicy) -> None:
        self.policy = policy
        self.state = EvaluatorState.EVALUATING
        self._skip_paths = PatternSet.compile(policy.exemptions.skip_paths)
        self._skip_agents = frozenset(policy.exemptions.skip_agents)
        self._skip_rules = frozenset(policy.exemptions.skip_rules)
        self._scopes = tuple((scope, PatternSet.compile(scope.paths)) for scope in policy.scopes)

    def scope_for(self, path: str) -> ScopeOverride | None:
        """Most specific matching scope; earlier declaration wins ties."""
        best: ScopeOverride | None = None
        best_specificity = -1
        for scope, patterns in self._scopes:
            specificity = patterns.best_specificity(path)
            if specificity is not None and specificity > best_specificity:
                best = scope
                best_specificity = specificity
        return best

    def effective_mode(self, path: str) -> Mode:
        scope = self.scope_for(path)
        if scope is not None and scope.mode is not None:
            return scope.mode
        return self.policy.mode

    def action_table(self, path: str) -> dict[Severity, Action]:
        """Mode defaults, then global overrides, then the scope's overrides."""
        scope = self.scope_for(path)
        table = dict(MODE_ACTIONS[self.effective_mode(path)])
        table.update(self.policy.severity_overrides)
        if scope is not None:
            table.update(scope.severity_overrides)
        return table

    def path_exempt(self, path: str) -> bool:
        return self._skip_paths.matches(path)

    def rule_exempt(self, rule: PathRule) -> bool:
        return rule.label in self._skip_rules or rule.pattern in self._skip_rules

    def finding_exempt(self, finding: Finding, rules: tuple[PathRule, ...]) -> bool:
        if self.path_exempt(finding.path) or finding.analysis in self._skip_agents:
            return True
        return bool(rules) and all(self.rule_exempt(rule) for rule in rules)

    def evaluate(self, reviews: Sequence[FileReview]) -> GateDecision:
        if self.state is EvaluatorState.DECIDED:
            raise RuntimeError("PolicyEvaluator already decided; create a new evaluator per invocation")

        rules_by_path = {review.file.path: review.rules for review in reviews}
        ordered = merge_findings(reviews)

        blocking: list[Finding] = []
        warning: list[Finding] = []
        informational: list[Finding] = []
        tables: dict[str, dict[Severity, Action]] = {}

        for finding in ordered:
            if self.finding_exempt(finding, rules_by_path.get(finding.path, ())):
                informational.append(finding)
                continue
            table = tables.get(finding.path)
            if table is None:
                table = self.action_table(finding.path)
                tables[finding.path] = table
            action = table[finding.severity]
            if action is Action.BLOCK:
                blocking.append(finding)
            elif action is Action.WARN:
                warning.append(finding)
            else:
                informational.append(finding)

        incomplete = self._incomplete_reviews(reviews)
        decision = self._decide(ordered, blocking, warning, informational, incomplete)
        self.state = EvaluatorState.DECIDED
        logger.debug("Gate decision %s: %s", decision.outcome.value, decision.reason)
        return decision

    def _incomplete_reviews(self, reviews: Sequence[FileReview]) -> list[str]:
        incomplete: list[str] = []
        for review in reviews:
            if review.file.kind is ChangeKind.DELETED or self.path_exempt(review.file.path):
                continue
            if not RuleMatcher.requirements(review.rules).block_without_review:
                continue
            for rule in review.rules:
                if not rule.block_without_review or self.rule_exempt(rule):
                    continue
                required = set(rule.analyses or self.policy.default_analyses)
                if required and required <= self._skip_agents:
                    continue
                if not required & review.completed:
                    incomplete.append(f"{rule.label}: {review.file.path}")
        return incomplete

    def _decide(
        self,
        ordered: list[Finding],
        blocking: list[Finding],
        warning: list[Finding],
        informational: list[Finding],
        incomplete: list[str],
    ) -> GateDecision:
        if blocking:
            top = min(blocking, key=lambda item: item.severity.rank)
            reason = f"Blocking finding: {top.describe()}"
            if len(blocking) > 1:
                reason += f" (+{len(blocking) - 1} more)"
            return GateDecision(
                outcome=Outcome.BLOCK,
                reason=reason,
                triggering=tuple(blocking),
                findings=tuple(ordered),
                informational=tuple(informational),
                incomplete_reviews=tuple(incomplete),
            )

        if incomplete:
            return GateDecision(
                outcome=Outcome.BLOCK,
                reason=f"{REVIEW_INCOMPLETE_REASON}: {'; '.join(incomplete)}",
                triggering=(),
                findings=tuple(ordered),
                informational=tuple(informational),
                incomplete_reviews=tuple(incomplete),
            )

        if warning:
            top = min(warning, key=lambda item: item.severity.rank)
            return GateDecision(
                outcome=Outcome.WARN,
                reason=f"{len(warning)} finding(s) need attention; highest: {top.describe()}",
                triggering=tuple(warning),
                findings=tuple(ordered),
                informational=tuple(informational),
            )

        return GateDecision(
            outcome=Outcome.ALLOW,
            reason="No blocking or warning findings",
            findings=tuple(ordered),
            informational=tuple(informational),
        )
