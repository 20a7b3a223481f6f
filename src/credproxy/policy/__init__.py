"""
Policy evaluation module for credproxy.

Every operation a third-party application requests against a stored
credential passes through this module before it is executed.

Key concepts:
    - PolicyEvaluator: decides one policy against one request
    - RequestEvaluator: decides a request against a whole policy set,
      applying priority order and escalation-gate precedence
    - Condition matching: CIDR containment and comparison operators

Evaluation is fail-closed: any error while evaluating a policy results in
a denial.
"""

from credproxy.policy.conditions import evaluate_condition, is_in_ip_range
from credproxy.policy.engine import RequestEvaluator, evaluate_request
from credproxy.policy.evaluator import PolicyEvaluator
from credproxy.policy.validation import (
    ValidationIssue,
    ValidationResult,
    validate_policy,
    validate_policy_config,
)

__all__ = [
    "PolicyEvaluator",
    "RequestEvaluator",
    "ValidationIssue",
    "ValidationResult",
    "evaluate_condition",
    "evaluate_request",
    "is_in_ip_range",
    "validate_policy",
    "validate_policy_config",
]
