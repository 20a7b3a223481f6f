"""
Unit tests for request-level evaluation.

Tests cover:
- Empty policy sets
- Priority ordering and stable ties
- Escalation gates pre-empting priority order
- Inactive policies
- Denial reason wrapping and short-circuiting
"""

from collections.abc import Callable
from unittest.mock import AsyncMock

import pytest

from credproxy.policy import PolicyEvaluator, RequestEvaluator, evaluate_request
from credproxy.schema import (
    Policy,
    PolicyEvaluationResult,
    PolicyStatus,
    PolicyType,
    ProxyRequest,
)

MakeRequest = Callable[..., ProxyRequest]
MakePolicy = Callable[..., Policy]


@pytest.fixture
def engine() -> RequestEvaluator:
    return RequestEvaluator()


# =============================================================================
# Ordering Tests
# =============================================================================


class TestOrdering:
    """Priority ordering and aggregate results."""

    @pytest.mark.asyncio()
    async def test_no_policies_approved(
        self,
        engine: RequestEvaluator,
        make_request: MakeRequest,
    ) -> None:
        result = await engine.evaluate_request(make_request(), [])

        assert result.status == PolicyStatus.APPROVED
        assert result.reason == "No policies defined"
        assert result.policy_id is None

    @pytest.mark.asyncio()
    async def test_higher_priority_deny_wins(
        self,
        engine: RequestEvaluator,
        make_request: MakeRequest,
        make_policy: MakePolicy,
    ) -> None:
        """A priority-10 deny list beats a priority-5 allow list."""
        allow = make_policy(
            PolicyType.ALLOW_LIST,
            {"operations": ["read"]},
            id="allow",
            priority=5,
        )
        deny = make_policy(
            PolicyType.DENY_LIST,
            {"operations": ["read"]},
            id="deny",
            name="No reads",
            priority=10,
        )

        result = await engine.evaluate_request(make_request(operation="read"), [allow, deny])

        assert result.status == PolicyStatus.DENIED
        assert result.policy_id == "deny"
        assert result.reason == (
            "Request denied by policy: No reads - Operation read is in the deny list"
        )

    @pytest.mark.asyncio()
    async def test_all_pass(
        self,
        engine: RequestEvaluator,
        make_request: MakeRequest,
        make_policy: MakePolicy,
    ) -> None:
        policies = [
            make_policy(PolicyType.ALLOW_LIST, {"operations": ["read"]}),
            make_policy(PolicyType.DENY_LIST, {"operations": ["delete"]}),
        ]

        result = await engine.evaluate_request(make_request(operation="read"), policies)

        assert result.status == PolicyStatus.APPROVED
        assert result.reason == "All policies passed"

    @pytest.mark.asyncio()
    async def test_equal_priority_keeps_input_order(
        self,
        engine: RequestEvaluator,
        make_request: MakeRequest,
        make_policy: MakePolicy,
    ) -> None:
        """Ties are evaluated in the order given; the first denial is reported."""
        first = make_policy(
            PolicyType.DENY_LIST, {"operations": ["read"]}, id="first", priority=1
        )
        second = make_policy(
            PolicyType.ALLOW_LIST, {"operations": ["write"]}, id="second", priority=1
        )

        forward = await engine.evaluate_request(make_request(), [first, second])
        backward = await engine.evaluate_request(make_request(), [second, first])

        assert forward.policy_id == "first"
        assert backward.policy_id == "second"

    @pytest.mark.asyncio()
    async def test_inactive_policies_skipped(
        self,
        engine: RequestEvaluator,
        make_request: MakeRequest,
        make_policy: MakePolicy,
    ) -> None:
        deny = make_policy(PolicyType.DENY_LIST, {"operations": ["read"]}, is_active=False)

        result = await engine.evaluate_request(make_request(), [deny])

        assert result.status == PolicyStatus.APPROVED
        assert result.reason == "All policies passed"

    @pytest.mark.asyncio()
    async def test_first_non_approval_short_circuits(
        self,
        make_request: MakeRequest,
        make_policy: MakePolicy,
    ) -> None:
        """Evaluation stops at the first DENIED result."""
        evaluator = PolicyEvaluator()
        spy = AsyncMock(wraps=evaluator.evaluate_policy)
        evaluator.evaluate_policy = spy  # type: ignore[method-assign]
        engine = RequestEvaluator(evaluator)

        policies = [
            make_policy(PolicyType.DENY_LIST, {"operations": ["read"]}, id="a", priority=3),
            make_policy(PolicyType.ALLOW_LIST, {"operations": []}, id="b", priority=2),
            make_policy(PolicyType.ALLOW_LIST, {"operations": []}, id="c", priority=1),
        ]

        result = await engine.evaluate_request(make_request(), policies)

        assert result.policy_id == "a"
        assert spy.await_count == 1

    @pytest.mark.asyncio()
    async def test_pending_returned_as_is(
        self,
        engine: RequestEvaluator,
        make_request: MakeRequest,
        make_policy: MakePolicy,
    ) -> None:
        """A PENDING from an ordinary policy is returned unchanged."""
        context = make_policy(
            PolicyType.CONTEXT_AWARE,
            {"conditions": [], "defaultAction": "require_approval"},
            priority=5,
        )
        deny = make_policy(PolicyType.DENY_LIST, {"operations": ["read"]}, priority=1)

        result = await engine.evaluate_request(make_request(), [deny, context])

        assert result.status == PolicyStatus.PENDING
        assert result.policy_id == context.id
        assert result.reason == "No context conditions matched, default action is manual approval"


# =============================================================================
# Escalation Gate Tests
# =============================================================================


class TestEscalationGates:
    """MANUAL_APPROVAL / APPROVAL_CHAIN pre-emption."""

    @pytest.mark.asyncio()
    @pytest.mark.parametrize(("deny_priority", "approval_priority"), [(5, 10), (10, 5)])
    async def test_manual_approval_preempts_deny(
        self,
        engine: RequestEvaluator,
        make_request: MakeRequest,
        make_policy: MakePolicy,
        deny_priority: int,
        approval_priority: int,
    ) -> None:
        """Manual approval wins regardless of relative priority."""
        deny = make_policy(
            PolicyType.DENY_LIST, {"operations": ["read"]}, priority=deny_priority
        )
        approval = make_policy(
            PolicyType.MANUAL_APPROVAL, {"operations": []}, priority=approval_priority
        )

        result = await engine.evaluate_request(make_request(), [deny, approval])

        assert result.status == PolicyStatus.PENDING
        assert result.policy_id == approval.id
        assert result.requires_approval is True

    @pytest.mark.asyncio()
    async def test_gate_result_is_final(
        self,
        engine: RequestEvaluator,
        make_request: MakeRequest,
        make_policy: MakePolicy,
    ) -> None:
        """A gate that approves decides the request on its own."""
        deny = make_policy(PolicyType.DENY_LIST, {"operations": ["read"]}, priority=100)
        approval = make_policy(PolicyType.MANUAL_APPROVAL, {"operations": ["send"]})

        result = await engine.evaluate_request(make_request(operation="read"), [deny, approval])

        assert result.status == PolicyStatus.APPROVED
        assert result.policy_id == approval.id

    @pytest.mark.asyncio()
    async def test_manual_approval_before_approval_chain(
        self,
        engine: RequestEvaluator,
        make_request: MakeRequest,
        make_policy: MakePolicy,
    ) -> None:
        chain = make_policy(PolicyType.APPROVAL_CHAIN, {"approvalSteps": []}, priority=50)
        manual = make_policy(PolicyType.MANUAL_APPROVAL, {}, priority=1)

        result = await engine.evaluate_request(make_request(), [chain, manual])

        assert result.policy_id == manual.id
        assert result.reason == "Request requires manual approval"

    @pytest.mark.asyncio()
    async def test_approval_chain_preempts_deny(
        self,
        engine: RequestEvaluator,
        make_request: MakeRequest,
        make_policy: MakePolicy,
    ) -> None:
        deny = make_policy(PolicyType.DENY_LIST, {"operations": ["read"]}, priority=10)
        chain = make_policy(PolicyType.APPROVAL_CHAIN, {"approvalSteps": []}, priority=1)

        result = await engine.evaluate_request(make_request(), [deny, chain])

        assert result.status == PolicyStatus.PENDING
        assert result.policy_id == chain.id

    @pytest.mark.asyncio()
    async def test_inactive_gate_ignored(
        self,
        engine: RequestEvaluator,
        make_request: MakeRequest,
        make_policy: MakePolicy,
    ) -> None:
        manual = make_policy(PolicyType.MANUAL_APPROVAL, {}, is_active=False)
        deny = make_policy(PolicyType.DENY_LIST, {"operations": ["read"]})

        result = await engine.evaluate_request(make_request(), [manual, deny])

        assert result.status == PolicyStatus.DENIED
        assert result.policy_id == deny.id

    @pytest.mark.asyncio()
    async def test_highest_priority_gate_chosen(
        self,
        make_request: MakeRequest,
        make_policy: MakePolicy,
    ) -> None:
        """Among several manual approval gates the highest priority one decides."""
        low = make_policy(PolicyType.MANUAL_APPROVAL, {}, id="low", priority=1)
        high = make_policy(PolicyType.MANUAL_APPROVAL, {}, id="high", priority=9)

        result = await evaluate_request(make_request(), [low, high])

        assert result.policy_id == "high"


# =============================================================================
# Failure Tests
# =============================================================================


class TestFailures:
    """Fail-closed behavior at request level."""

    @pytest.mark.asyncio()
    async def test_unknown_type_denies_request(
        self,
        engine: RequestEvaluator,
        make_request: MakeRequest,
        make_policy: MakePolicy,
    ) -> None:
        policy = make_policy("GEOFENCE", {}, name="Geo")

        result = await engine.evaluate_request(make_request(), [policy])

        assert result.status == PolicyStatus.DENIED
        assert result.reason == "Request denied by policy: Geo - Unknown policy type: GEOFENCE"

    @pytest.mark.asyncio()
    async def test_usage_asymmetry(
        self,
        make_request: MakeRequest,
        make_policy: MakePolicy,
    ) -> None:
        """With a failing metrics provider rate limits pass and thresholds deny."""
        metrics = AsyncMock()
        metrics.get_usage_metrics.side_effect = ConnectionError("unreachable")
        engine = RequestEvaluator(PolicyEvaluator(metrics=metrics))

        rate = make_policy(PolicyType.RATE_LIMITING, {"maxRequests": 1, "timeWindow": "1h"})
        threshold = make_policy(
            PolicyType.USAGE_THRESHOLD,
            {"thresholdType": "eth_value", "maxValue": 0.1, "timeWindow": "daily"},
        )

        rate_only = await engine.evaluate_request(make_request(), [rate])
        threshold_only = await engine.evaluate_request(make_request(), [threshold])

        assert rate_only.status == PolicyStatus.APPROVED
        assert threshold_only.status == PolicyStatus.DENIED
        assert threshold_only.policy_id == threshold.id

    @pytest.mark.asyncio()
    async def test_custom_evaluator_result_wrapped(
        self,
        make_request: MakeRequest,
        make_policy: MakePolicy,
    ) -> None:
        """Denials from any evaluator are wrapped with the policy name."""
        evaluator = PolicyEvaluator()
        evaluator.evaluate_policy = AsyncMock(  # type: ignore[method-assign]
            return_value=PolicyEvaluationResult.deny("nope", policy_id="x"),
        )
        policy = make_policy(PolicyType.ALLOW_LIST, {}, id="p1", name="Custom")

        result = await RequestEvaluator(evaluator).evaluate_request(make_request(), [policy])

        assert result.reason == "Request denied by policy: Custom - nope"
        assert result.policy_id == "p1"
