"""
Request-level policy evaluation for credproxy.

The RequestEvaluator decides a proxy request against the full policy set
attached to its credential/application pair and returns exactly one
PolicyEvaluationResult.

How it works:
    1. No policies -> APPROVED
    2. Policies are sorted by priority, highest first (stable)
    3. Escalation gates pre-empt everything else: the first active
       MANUAL_APPROVAL policy decides the request on its own; failing that,
       the first active APPROVAL_CHAIN policy does
    4. Otherwise active policies are evaluated in order; the first DENIED or
       PENDING result ends evaluation
    5. If every policy approves, the request is APPROVED

The escalation override applies regardless of priority: an active
MANUAL_APPROVAL policy wins even over a higher-priority DENY_LIST.
"""

from collections.abc import Iterable

from credproxy.observability import get_logger
from credproxy.policy.evaluator import PolicyEvaluator
from credproxy.schema import (
    ESCALATION_TYPES,
    Policy,
    PolicyEvaluationResult,
    PolicyStatus,
    ProxyRequest,
)

logger = get_logger(__name__)


class RequestEvaluator:
    """
    Orchestrates policy evaluation for one request.

    Usage:
        engine = RequestEvaluator(PolicyEvaluator(metrics=provider))
        result = await engine.evaluate_request(request, policies)
        if result.status == PolicyStatus.DENIED:
            # reject with result.reason

    Attributes:
        evaluator: The single-policy evaluator used for every policy
    """

    def __init__(self, evaluator: PolicyEvaluator | None = None) -> None:
        self.evaluator = evaluator or PolicyEvaluator()

    async def evaluate_request(
        self,
        request: ProxyRequest,
        policies: Iterable[Policy] = (),
    ) -> PolicyEvaluationResult:
        """
        Evaluate a request against a policy set.

        Args:
            request: The proxy request to decide
            policies: Policies applicable to the request's credential and
                application (active and inactive)

        Returns:
            The terminal PolicyEvaluationResult
        """
        policies = list(policies)
        logger.info(
            "evaluating_request",
            request_id=request.id,
            application_id=request.application_id,
            credential_id=request.credential_id,
            operation=request.operation,
            policy_count=len(policies),
        )

        if not policies:
            return self._finish(
                request,
                PolicyEvaluationResult.approve(reason="No policies defined"),
            )

        ordered = sorted(policies, key=lambda p: -p.priority)

        for gate_type in ESCALATION_TYPES:
            gate = next(
                (p for p in ordered if p.is_active and p.type == gate_type),
                None,
            )
            if gate is not None:
                result = await self.evaluator.evaluate_policy(request, gate)
                return self._finish(request, result)

        for policy in ordered:
            if not policy.is_active:
                continue

            result = await self.evaluator.evaluate_policy(request, policy)

            if result.status == PolicyStatus.DENIED:
                return self._finish(
                    request,
                    PolicyEvaluationResult.deny(
                        f"Request denied by policy: {policy.name} - {result.reason or ''}",
                        policy_id=policy.id,
                    ),
                )

            if result.status == PolicyStatus.PENDING:
                return self._finish(request, result)

        return self._finish(
            request,
            PolicyEvaluationResult.approve(reason="All policies passed"),
        )

    def _finish(
        self,
        request: ProxyRequest,
        result: PolicyEvaluationResult,
    ) -> PolicyEvaluationResult:
        logger.info(
            "request_evaluated",
            request_id=request.id,
            status=result.status.value,
            policy_id=result.policy_id,
            reason=result.reason,
        )
        return result


async def evaluate_request(
    request: ProxyRequest,
    policies: Iterable[Policy] = (),
    evaluator: PolicyEvaluator | None = None,
) -> PolicyEvaluationResult:
    """Evaluate a request with a one-off RequestEvaluator."""
    return await RequestEvaluator(evaluator).evaluate_request(request, policies)
