"""Git operations for the change gate."""

from changegate.git.classifier import classify_changes, resolve_baseline, resolve_repo_root
from changegate.git.hooks import install_pre_push_hook, parse_push_refs, push_ranges, resolve_push_base

__all__ = [
    "classify_changes",
    "install_pre_push_hook",
    "parse_push_refs",
    "push_ranges",
    "resolve_baseline",
    "resolve_push_base",
    "resolve_repo_root",
]
