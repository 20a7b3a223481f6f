"""
credproxy - Policy evaluation engine for a credential proxy.

Third-party applications never see stored credentials; they ask the proxy to
perform operations on their behalf. credproxy decides each such request
against the policies attached to the credential:
- Eleven policy types (allow/deny lists, schedules, rate limits, ...)
- Priority ordering with escalation gates (manual approval, approval chains)
- Fail-closed evaluation: errors deny
- Policy templates to bootstrap a credential's policy set

Example usage:
    $ credproxy evaluate request.yaml --policies policies.yaml
    $ credproxy templates --type ethereum --recommended
    $ credproxy apply-template read-only cred-1 --db credproxy.db
"""

__version__ = "0.1.0"
__author__ = "credproxy Contributors"

from credproxy.policy import PolicyEvaluator, RequestEvaluator, evaluate_request
from credproxy.schema import (
    Policy,
    PolicyEvaluationResult,
    PolicyScope,
    PolicyStatus,
    PolicyType,
    ProxyRequest,
)
from credproxy.templates import PolicyTemplateService

__all__ = [
    "Policy",
    "PolicyEvaluationResult",
    "PolicyEvaluator",
    "PolicyScope",
    "PolicyStatus",
    "PolicyTemplateService",
    "PolicyType",
    "ProxyRequest",
    "RequestEvaluator",
    "__author__",
    "__version__",
    "evaluate_request",
]
