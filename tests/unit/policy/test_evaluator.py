"""Tests for policy evaluation."""

from __future__ import annotations

import pytest

from changegate.policy.config import DEFAULT_POLICY, EnforcementPolicy, Exemptions, ScopeOverride
from changegate.policy.evaluator import REVIEW_INCOMPLETE_REASON, PolicyEvaluator, merge_findings
from changegate.types import (
    Action,
    ChangedFile,
    ChangeKind,
    FileReview,
    Finding,
    Mode,
    Outcome,
    PathRule,
    Severity,
)

AUTH_RULE = PathRule(
    pattern="**/auth/**",
    label="Authentication",
    analyses=("security",),
    block_without_review=True,
)


def _file(path: str, kind: ChangeKind = ChangeKind.MODIFIED) -> ChangedFile:
    return ChangedFile(
        path=path,
        kind=kind,
        fingerprint=None if kind is ChangeKind.DELETED else "fp",
        line_count=10,
        language="typescript",
    )


def _finding(path: str, severity: Severity, analysis: str = "security", line: int = 42) -> Finding:
    return Finding(
        path=path,
        line=line,
        severity=severity,
        category="secrets",
        message="hard-coded credential",
        analysis=analysis,
    )


def _review(
    path: str,
    findings: list[Finding] | None = None,
    rules: tuple[PathRule, ...] = (),
    completed: set[str] | None = None,
    kind: ChangeKind = ChangeKind.MODIFIED,
) -> FileReview:
    return FileReview(
        file=_file(path, kind),
        rules=rules,
        findings=tuple(findings or ()),
        completed=frozenset(completed if completed is not None else {"security"}),
    )


def test_critical_finding_blocks_in_hybrid_and_names_it() -> None:
    policy = EnforcementPolicy(mode=Mode.HYBRID, rules=(AUTH_RULE,))
    finding = _finding("src/auth/login.ts", Severity.CRITICAL)

    decision = PolicyEvaluator(policy).evaluate([_review("src/auth/login.ts", [finding], rules=(AUTH_RULE,))])

    assert decision.outcome is Outcome.BLOCK
    assert decision.triggering == (finding,)
    assert "src/auth/login.ts:42" in decision.reason
    assert "CRITICAL" in decision.reason


def test_no_rules_no_findings_allows() -> None:
    decision = PolicyEvaluator(EnforcementPolicy()).evaluate([_review("README.md", completed=set())])

    assert decision.outcome is Outcome.ALLOW
    assert decision.triggering == ()


def test_missing_required_review_blocks_fail_closed() -> None:
    policy = EnforcementPolicy(rules=(AUTH_RULE,))
    review = _review("src/auth/session.ts", rules=(AUTH_RULE,), completed=set())

    decision = PolicyEvaluator(policy).evaluate([review])

    assert decision.outcome is Outcome.BLOCK
    assert decision.reason.startswith(REVIEW_INCOMPLETE_REASON)
    assert decision.incomplete_reviews == ("Authentication: src/auth/session.ts",)


def test_deleted_file_does_not_require_review() -> None:
    policy = EnforcementPolicy(rules=(AUTH_RULE,))
    review = _review("src/auth/old.ts", rules=(AUTH_RULE,), completed=set(), kind=ChangeKind.DELETED)

    assert PolicyEvaluator(policy).evaluate([review]).outcome is Outcome.ALLOW


@pytest.mark.parametrize(
    ("mode", "severity", "expected"),
    [
        (Mode.STRICT, Severity.HIGH, Outcome.BLOCK),
        (Mode.STRICT, Severity.LOW, Outcome.WARN),
        (Mode.HYBRID, Severity.HIGH, Outcome.WARN),
        (Mode.HYBRID, Severity.LOW, Outcome.ALLOW),
        (Mode.ADVISORY, Severity.CRITICAL, Outcome.WARN),
        (Mode.EDUCATIONAL, Severity.CRITICAL, Outcome.ALLOW),
    ],
)
def test_mode_tables(mode: Mode, severity: Severity, expected: Outcome) -> None:
    decision = PolicyEvaluator(EnforcementPolicy(mode=mode)).evaluate(
        [_review("src/app.py", [_finding("src/app.py", severity)])]
    )
    assert decision.outcome is expected


def test_warn_keeps_low_findings_informational() -> None:
    high = _finding("src/app.py", Severity.HIGH, line=1)
    low = _finding("src/app.py", Severity.LOW, line=2)

    decision = PolicyEvaluator(EnforcementPolicy(mode=Mode.HYBRID)).evaluate([_review("src/app.py", [low, high])])

    assert decision.outcome is Outcome.WARN
    assert decision.triggering == (high,)
    assert decision.informational == (low,)
    assert decision.findings == (high, low)


def test_global_override_beats_mode_default() -> None:
    policy = EnforcementPolicy(mode=Mode.HYBRID, severity_overrides={Severity.MEDIUM: Action.BLOCK})

    decision = PolicyEvaluator(policy).evaluate([_review("src/app.py", [_finding("src/app.py", Severity.MEDIUM)])])

    assert decision.outcome is Outcome.BLOCK


def test_most_specific_scope_wins() -> None:
    policy = EnforcementPolicy(
        mode=Mode.HYBRID,
        scopes=(
            ScopeOverride(name="services", paths=("services/**",), mode=Mode.ADVISORY),
            ScopeOverride(
                name="payments-team",
                paths=("services/payment/**",),
                severity_overrides={Severity.HIGH: Action.BLOCK},
            ),
        ),
    )
    evaluator = PolicyEvaluator(policy)

    assert evaluator.scope_for("services/payment/charge.py").name == "payments-team"
    assert evaluator.scope_for("services/search/index.py").name == "services"
    assert evaluator.scope_for("README.md") is None
    assert evaluator.effective_mode("services/search/index.py") is Mode.ADVISORY

    decision = evaluator.evaluate(
        [_review("services/payment/charge.py", [_finding("services/payment/charge.py", Severity.HIGH)])]
    )
    assert decision.outcome is Outcome.BLOCK


def test_scope_override_beats_global_override() -> None:
    policy = EnforcementPolicy(
        mode=Mode.HYBRID,
        severity_overrides={Severity.CRITICAL: Action.WARN},
        scopes=(ScopeOverride(name="core", paths=("core/**",), severity_overrides={Severity.CRITICAL: Action.BLOCK}),),
    )
    evaluator = PolicyEvaluator(policy)

    assert evaluator.action_table("core/engine.py")[Severity.CRITICAL] is Action.BLOCK
    assert evaluator.action_table("lib/util.py")[Severity.CRITICAL] is Action.WARN


def test_exemptions_move_findings_to_informational() -> None:
    policy = EnforcementPolicy(
        mode=Mode.STRICT,
        rules=(AUTH_RULE,),
        exemptions=Exemptions(skip_paths=("docs/**",), skip_agents=("style",), skip_rules=("Authentication",)),
    )
    reviews = [
        _review("docs/guide.md", [_finding("docs/guide.md", Severity.CRITICAL)]),
        _review("src/app.py", [_finding("src/app.py", Severity.HIGH, analysis="style")]),
        _review("src/auth/login.ts", [_finding("src/auth/login.ts", Severity.HIGH)], rules=(AUTH_RULE,), completed=set()),
    ]

    decision = PolicyEvaluator(policy).evaluate(reviews)

    assert decision.outcome is Outcome.ALLOW
    assert len(decision.informational) == 3
    assert decision.incomplete_reviews == ()


def test_default_policy_never_blocks() -> None:
    decision = PolicyEvaluator(DEFAULT_POLICY).evaluate(
        [_review("src/app.py", [_finding("src/app.py", Severity.CRITICAL)])]
    )

    assert decision.outcome is Outcome.WARN


def test_evaluator_decides_once() -> None:
    evaluator = PolicyEvaluator(EnforcementPolicy())
    evaluator.evaluate([])

    with pytest.raises(RuntimeError):
        evaluator.evaluate([])


def test_merge_orders_by_path_then_severity() -> None:
    reviews = [
        _review("b.py", [_finding("b.py", Severity.LOW), _finding("b.py", Severity.CRITICAL)]),
        _review("a.py", [_finding("a.py", Severity.MEDIUM)]),
    ]

    merged = merge_findings(reviews)

    assert [(item.path, item.severity) for item in merged] == [
        ("a.py", Severity.MEDIUM),
        ("b.py", Severity.CRITICAL),
        ("b.py", Severity.LOW),
    ]
