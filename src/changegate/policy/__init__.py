"""Enforcement policy: configuration and evaluation."""

from changegate.policy.config import DEFAULT_POLICY, load_config
from changegate.policy.evaluator import PolicyEvaluator

__all__ = ["DEFAULT_POLICY", "PolicyEvaluator", "load_config"]
