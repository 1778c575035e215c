"""Glob-style path rule compilation and matching.

Pattern semantics:
    ``**``  zero or more whole path segments
    ``*``   any run of characters inside one segment
    ``?``   exactly one character inside one segment
    other   literal, case-sensitive

Patterns are anchored to the full repository-relative path. A pattern
ending in ``/`` means everything below that directory.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache

from changegate.types import PathRule


@dataclass(frozen=True)
class CompiledPattern:
    """One pattern compiled to an anchored regular expression."""

    pattern: str
    regex: re.Pattern[str]
    specificity: int

    def matches(self, path: str) -> bool:
        return self.regex.match(_normalize_path(path) + "/") is not None


@dataclass(frozen=True)
class RuleRequirements:
    """Accumulated requirements of all rules matching one file.

    ``analyses`` keeps first-seen order: defaults, then rules as declared.
    """

    analyses: tuple[str, ...]
    block_without_review: bool


def _normalize_path(path: str) -> str:
    return path.replace("\\", "/").strip("/")


def _segment_regex(segment: str) -> str:
    parts: list[str] = []
    for char in segment:
        if char == "*":
            parts.append("[^/]*")
        elif char == "?":
            parts.append("[^/]")
        else:
            parts.append(re.escape(char))
    return "".join(parts)


@lru_cache(maxsize=512)
def compile_pattern(pattern: str) -> CompiledPattern:
    """Compile a path pattern. Pure, so results are memoized."""
    cleaned = pattern.strip().replace("\\", "/")
    if not cleaned:
        raise ValueError("path pattern must be non-empty")
    if cleaned.endswith("/"):
        cleaned = f"{cleaned}**"
    segments = [segment for segment in cleaned.strip("/").split("/") if segment]

    # Every segment consumes its trailing slash; the subject gets one appended.
    body: list[str] = []
    specificity = 0
    for segment in segments:
        if segment == "**":
            body.append("(?:[^/]+/)*")
            continue
        body.append(f"{_segment_regex(segment)}/")
        if "*" not in segment and "?" not in segment:
            specificity += 1

    return CompiledPattern(
        pattern=pattern,
        regex=re.compile("^" + "".join(body) + "$"),
        specificity=specificity,
    )


@dataclass(frozen=True)
class PatternSet:
    """Immutable set of compiled patterns (exemptions, scope paths)."""

    patterns: tuple[CompiledPattern, ...] = ()

    @classmethod
    def compile(cls, patterns: list[str] | tuple[str, ...]) -> PatternSet:
        return cls(patterns=tuple(compile_pattern(item) for item in patterns))

    def matches(self, path: str) -> bool:
        return any(item.matches(path) for item in self.patterns)

    def best_specificity(self, path: str) -> int | None:
        """Highest specificity among matching patterns, or None."""
        best: int | None = None
        for item in self.patterns:
            if item.matches(path) and (best is None or item.specificity > best):
                best = item.specificity
        return best


@dataclass(frozen=True)
class RuleMatcher:
    """Compiled path rules, built once per invocation."""

    entries: tuple[tuple[CompiledPattern, PathRule], ...] = ()

    @classmethod
    def compile(cls, rules: list[PathRule] | tuple[PathRule, ...]) -> RuleMatcher:
        return cls(entries=tuple((compile_pattern(rule.pattern), rule) for rule in rules))

    def match(self, path: str) -> tuple[PathRule, ...]:
        """Return rules matching ``path`` in declaration order."""
        return tuple(rule for compiled, rule in self.entries if compiled.matches(path))

    @staticmethod
    def requirements(rules: tuple[PathRule, ...], default: tuple[str, ...] = ()) -> RuleRequirements:
        """Union of ``default`` and every rule's analyses, OR of ``block_without_review``."""
        analyses: dict[str, None] = dict.fromkeys(default)
        block = False
        for rule in rules:
            analyses.update(dict.fromkeys(rule.analyses))
            block = block or rule.block_without_review
        return RuleRequirements(analyses=tuple(analyses), block_without_review=block)
