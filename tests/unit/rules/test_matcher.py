"""Tests for path pattern compilation and rule matching."""

from __future__ import annotations

import pytest

from changegate.rules.matcher import PatternSet, RuleMatcher, RuleRequirements, compile_pattern
from changegate.types import PathRule


@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("src/auth/login.ts", True),
        ("auth/login.ts", True),
        ("services/api/auth/tokens/jwt.py", True),
        ("src/authz/login.ts", False),
        ("src/Auth/login.ts", False),
        ("README.md", False),
    ],
)
def test_double_star_matches_any_depth(path: str, expected: bool) -> None:
    assert compile_pattern("**/auth/**").matches(path) is expected


def test_single_star_stays_within_one_segment() -> None:
    compiled = compile_pattern("src/*.py")
    assert compiled.matches("src/app.py")
    assert not compiled.matches("src/pkg/app.py")
    assert not compiled.matches("lib/app.py")


def test_question_mark_matches_exactly_one_character() -> None:
    compiled = compile_pattern("v?/schema.sql")
    assert compiled.matches("v1/schema.sql")
    assert not compiled.matches("v10/schema.sql")


def test_trailing_slash_means_everything_below() -> None:
    compiled = compile_pattern("docs/")
    assert compiled.matches("docs/guide/intro.md")
    assert not compiled.matches("src/docs.py")


def test_specificity_counts_literal_segments() -> None:
    assert compile_pattern("**").specificity == 0
    assert compile_pattern("**/auth/**").specificity == 1
    assert compile_pattern("services/payment/*.py").specificity == 2


def test_empty_pattern_is_rejected() -> None:
    with pytest.raises(ValueError):
        compile_pattern("  ")


def test_matcher_returns_rules_in_declaration_order() -> None:
    rules = [
        PathRule(pattern="**/payment/**", label="Payments", analyses=("security",)),
        PathRule(pattern="**/*.py", label="Python", analyses=("lint",)),
        PathRule(pattern="**/auth/**", label="Authentication", analyses=("security", "secrets")),
    ]
    matcher = RuleMatcher.compile(rules)

    matched = matcher.match("src/payment/refund.py")

    assert [rule.label for rule in matched] == ["Payments", "Python"]
    assert matcher.match("docs/readme.txt") == ()


def test_requirements_union_analyses_and_or_block_flag() -> None:
    rules = (
        PathRule(pattern="**/auth/**", label="Authentication", analyses=("security",), block_without_review=True),
        PathRule(pattern="**/*.py", label="Python", analyses=("lint", "security")),
    )

    requirements = RuleMatcher.requirements(rules)

    assert requirements.analyses == ("security", "lint")
    assert requirements.block_without_review is True
    assert RuleMatcher.requirements((), ("lint",)) == RuleRequirements(analyses=("lint",), block_without_review=False)


def test_requirements_put_defaults_first() -> None:
    rules = (PathRule(pattern="**/*.py", label="Python", analyses=("security", "lint")),)

    assert RuleMatcher.requirements(rules, ("lint", "style")).analyses == ("lint", "style", "security")


def test_pattern_set_best_specificity() -> None:
    patterns = PatternSet.compile(["**", "services/**", "services/payment/**"])

    assert patterns.best_specificity("services/payment/api.py") == 2
    assert patterns.best_specificity("README.md") == 0
    assert PatternSet.compile(["docs/**"]).best_specificity("src/app.py") is None
