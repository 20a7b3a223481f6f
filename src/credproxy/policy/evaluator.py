"""
Per-policy evaluation for credproxy.

The PolicyEvaluator decides one policy against one request. It dispatches on
the policy's type to one handler per PolicyType and returns a
PolicyEvaluationResult (APPROVED / DENIED / PENDING).

Design Principles:
    - Fail-closed: any error raised by a handler (including a malformed
      config) becomes a DENIED result carrying the error message
    - Unknown policy types are denied
    - Side-effect free: counters and usage figures come from injected
      collaborators, the evaluator itself holds no mutable state

Usage-lookup failures are the one deliberate asymmetry: USAGE_THRESHOLD
denies when usage cannot be determined, RATE_LIMITING approves.
"""

import re
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any, TypeVar

from pydantic import ValidationError

from credproxy.errors import (
    ConfigurationError,
    CredproxyError,
    PolicyConfigError,
    UnknownPolicyTypeError,
    UsageLookupError,
)
from credproxy.interfaces import UsageCounter, UsageMetricsProvider
from credproxy.observability import get_logger
from credproxy.policy.conditions import evaluate_condition, is_in_ip_range, values_equal
from credproxy.schema import (
    AllowListConfig,
    ConditionAction,
    ContextAwareConfig,
    ContextFactor,
    CountBasedConfig,
    DenyListConfig,
    IpRestrictionConfig,
    ManualApprovalConfig,
    PatternMatchConfig,
    Policy,
    PolicyConfigModel,
    PolicyEvaluationResult,
    PolicyType,
    ProxyRequest,
    RateLimitingConfig,
    TimeBasedConfig,
    UsageThresholdConfig,
)

logger = get_logger(__name__)

ConfigT = TypeVar("ConfigT", bound=PolicyConfigModel)
Handler = Callable[[ProxyRequest, Policy], Awaitable[PolicyEvaluationResult]]

_MISSING = object()

# Indexed by datetime.weekday() (Monday == 0).
_DAY_NAMES = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so they compare with aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _stringify(value: Any) -> str:
    """Render a parameter value for regex matching."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class PolicyEvaluator:
    """
    Evaluates a single policy against a single request.

    Usage:
        evaluator = PolicyEvaluator(metrics=my_metrics_provider)
        result = await evaluator.evaluate_policy(request, policy)

    Attributes:
        metrics: Usage metrics provider for USAGE_THRESHOLD / RATE_LIMITING
        counter: Per-policy counter for COUNT_BASED (optional)
        clock: Wall-clock source for CONTEXT_AWARE conditions
    """

    def __init__(
        self,
        metrics: UsageMetricsProvider | None = None,
        counter: UsageCounter | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.metrics = metrics
        self.counter = counter
        self.clock = clock
        self._handlers: dict[PolicyType, Handler] = {
            PolicyType.ALLOW_LIST: self._evaluate_allow_list,
            PolicyType.DENY_LIST: self._evaluate_deny_list,
            PolicyType.TIME_BASED: self._evaluate_time_based,
            PolicyType.COUNT_BASED: self._evaluate_count_based,
            PolicyType.MANUAL_APPROVAL: self._evaluate_manual_approval,
            PolicyType.PATTERN_MATCH: self._evaluate_pattern_match,
            PolicyType.USAGE_THRESHOLD: self._evaluate_usage_threshold,
            PolicyType.IP_RESTRICTION: self._evaluate_ip_restriction,
            PolicyType.RATE_LIMITING: self._evaluate_rate_limiting,
            PolicyType.APPROVAL_CHAIN: self._evaluate_approval_chain,
            PolicyType.CONTEXT_AWARE: self._evaluate_context_aware,
        }
        missing = [t.value for t in PolicyType if t not in self._handlers]
        if missing:
            raise ConfigurationError(
                message=f"No evaluator registered for policy types: {', '.join(missing)}",
            )

    @property
    def supported_types(self) -> frozenset[PolicyType]:
        return frozenset(self._handlers)

    async def evaluate_policy(
        self,
        request: ProxyRequest,
        policy: Policy,
    ) -> PolicyEvaluationResult:
        """
        Evaluate one policy against a request.

        Never raises: handler errors and unknown types produce DENIED.

        Args:
            request: The proxy request being decided
            policy: The policy to apply

        Returns:
            PolicyEvaluationResult for this policy
        """
        handler = self._handlers.get(policy.type)
        if handler is None:
            error = UnknownPolicyTypeError(
                policy_id=policy.id,
                policy_type=_type_name(policy.type),
            )
            logger.warning("unknown_policy_type", **error.context)
            return PolicyEvaluationResult.deny(error.message, policy_id=policy.id)

        try:
            result = await handler(request, policy)
        except Exception as e:
            message = e.message if isinstance(e, CredproxyError) else str(e)
            logger.error(
                "policy_evaluation_failed",
                policy_id=policy.id,
                policy_type=_type_name(policy.type),
                error=message,
            )
            return PolicyEvaluationResult.deny(
                f"Error evaluating policy: {message}",
                policy_id=policy.id,
            )

        logger.debug(
            "policy_evaluated",
            policy_id=policy.id,
            policy_type=_type_name(policy.type),
            status=result.status.value,
        )
        return result

    def _parse_config(self, policy: Policy, model: type[ConfigT]) -> ConfigT:
        """Validate policy.config against the model for its type."""
        try:
            return model.model_validate(policy.config)
        except ValidationError as e:
            raise PolicyConfigError(
                policy_id=policy.id,
                validation_error=str(e),
            ) from e

    # =========================================================================
    # List Policies
    # =========================================================================

    async def _evaluate_allow_list(
        self,
        request: ProxyRequest,
        policy: Policy,
    ) -> PolicyEvaluationResult:
        config = self._parse_config(policy, AllowListConfig)

        if config.operations and request.operation not in config.operations:
            return PolicyEvaluationResult.deny(
                f"Operation {request.operation} is not in the allow list",
                policy_id=policy.id,
            )

        for key, value in config.parameters.items():
            if not values_equal(request.parameters.get(key, _MISSING), value):
                return PolicyEvaluationResult.deny(
                    f"Parameter {key} does not match the required value",
                    policy_id=policy.id,
                )

        return PolicyEvaluationResult.approve(policy_id=policy.id)

    async def _evaluate_deny_list(
        self,
        request: ProxyRequest,
        policy: Policy,
    ) -> PolicyEvaluationResult:
        config = self._parse_config(policy, DenyListConfig)

        if request.operation in config.operations:
            return PolicyEvaluationResult.deny(
                f"Operation {request.operation} is in the deny list",
                policy_id=policy.id,
            )

        for key, value in config.parameters.items():
            if values_equal(request.parameters.get(key, _MISSING), value):
                return PolicyEvaluationResult.deny(
                    f"Parameter {key} matches a denied value",
                    policy_id=policy.id,
                )

        return PolicyEvaluationResult.approve(policy_id=policy.id)

    # =========================================================================
    # Time and Count Policies
    # =========================================================================

    async def _evaluate_time_based(
        self,
        request: ProxyRequest,
        policy: Policy,
    ) -> PolicyEvaluationResult:
        """
        Check the absolute window, then the recurring weekly schedule.

        Day and hour come from request.timestamp as given; config.time_zone
        is not applied.
        """
        config = self._parse_config(policy, TimeBasedConfig)
        now = _as_utc(request.timestamp)
        start = _as_utc(config.start_time) if config.start_time else None
        end = _as_utc(config.end_time) if config.end_time else None

        if start and end:
            if now < start or now > end:
                return PolicyEvaluationResult.deny(
                    "Access not allowed outside the scheduled time window",
                    policy_id=policy.id,
                )
        elif start and start > now:
            return PolicyEvaluationResult.deny(
                "Access not allowed before the scheduled start time",
                policy_id=policy.id,
            )
        elif end and end < now:
            return PolicyEvaluationResult.deny(
                "Access not allowed after the scheduled end time",
                policy_id=policy.id,
            )

        schedule = config.recurring_schedule
        if schedule is not None:
            day_matches = True
            hour_matches = True

            if schedule.days_of_week:
                today = _DAY_NAMES[request.timestamp.weekday()]
                allowed_days = {day.lower() for day in schedule.days_of_week}
                day_matches = today in allowed_days

            if schedule.hours_of_day:
                hour_matches = request.timestamp.hour in schedule.hours_of_day

            if not day_matches or not hour_matches:
                return PolicyEvaluationResult.deny(
                    "Access not allowed at current time "
                    f"(day: {str(day_matches).lower()}, hour: {str(hour_matches).lower()})",
                    policy_id=policy.id,
                )

        return PolicyEvaluationResult.approve(policy_id=policy.id)

    async def _evaluate_count_based(
        self,
        request: ProxyRequest,
        policy: Policy,
    ) -> PolicyEvaluationResult:
        """
        Compare prior uses against max_count.

        Without a counter every request counts as the first use, so only a
        non-positive max_count denies.
        """
        config = self._parse_config(policy, CountBasedConfig)

        if self.counter is None:
            previous = 0
        else:
            previous = await self.counter.increment(policy.id, config.reset_period) - 1

        if previous >= config.max_count:
            return PolicyEvaluationResult.deny(
                f"Maximum usage count ({config.max_count}) reached",
                policy_id=policy.id,
            )

        return PolicyEvaluationResult.approve(policy_id=policy.id)

    # =========================================================================
    # Escalation Policies
    # =========================================================================

    async def _evaluate_manual_approval(
        self,
        request: ProxyRequest,
        policy: Policy,
    ) -> PolicyEvaluationResult:
        config = self._parse_config(policy, ManualApprovalConfig)

        # An operations list narrows escalation to those operations.
        if config.operations and request.operation not in config.operations:
            return PolicyEvaluationResult.approve(policy_id=policy.id)

        return PolicyEvaluationResult.pending(
            "Request requires manual approval",
            policy_id=policy.id,
        )

    async def _evaluate_approval_chain(
        self,
        request: ProxyRequest,
        policy: Policy,
    ) -> PolicyEvaluationResult:
        # Step progression belongs to the external approval workflow.
        return PolicyEvaluationResult.pending(
            "Request requires approval through approval chain",
            policy_id=policy.id,
        )

    # =========================================================================
    # Parameter Policies
    # =========================================================================

    async def _evaluate_pattern_match(
        self,
        request: ProxyRequest,
        policy: Policy,
    ) -> PolicyEvaluationResult:
        """
        Deny on the first deny-pattern that matches a present parameter.

        Allow-patterns that match do not approve early; remaining patterns
        are still checked.
        """
        config = self._parse_config(policy, PatternMatchConfig)

        for rule in config.patterns:
            if rule.parameter_name not in request.parameters:
                continue

            value = _stringify(request.parameters[rule.parameter_name])
            if re.search(rule.pattern, value) and not rule.allow:
                return PolicyEvaluationResult.deny(
                    f"Parameter {rule.parameter_name} matches denied pattern: {rule.pattern}",
                    policy_id=policy.id,
                )

        return PolicyEvaluationResult.approve(policy_id=policy.id)

    async def _evaluate_ip_restriction(
        self,
        request: ProxyRequest,
        policy: Policy,
    ) -> PolicyEvaluationResult:
        config = self._parse_config(policy, IpRestrictionConfig)

        if not request.ip:
            return PolicyEvaluationResult.deny(
                "No IP address provided in request",
                policy_id=policy.id,
            )

        # Denied ranges take precedence
        for ip_range in config.denied_ips:
            if is_in_ip_range(request.ip, ip_range):
                return PolicyEvaluationResult.deny(
                    f"IP {request.ip} is in denied range {ip_range}",
                    policy_id=policy.id,
                )

        if not config.allowed_ips:
            return PolicyEvaluationResult.approve(policy_id=policy.id)

        for ip_range in config.allowed_ips:
            if is_in_ip_range(request.ip, ip_range):
                return PolicyEvaluationResult.approve(policy_id=policy.id)

        if config.default_action == ConditionAction.ALLOW.value:
            return PolicyEvaluationResult.approve(policy_id=policy.id)

        return PolicyEvaluationResult.deny(
            f"IP {request.ip} is not in the allowed list",
            policy_id=policy.id,
        )

    # =========================================================================
    # Usage Policies
    # =========================================================================

    async def _lookup_usage(
        self,
        policy: Policy,
        credential_id: str,
        metric_type: str,
        time_window: int | str,
    ) -> float:
        """Fetch a usage figure, normalising every failure to UsageLookupError."""
        if self.metrics is None:
            raise UsageLookupError(
                policy_id=policy.id,
                metric_type=metric_type,
                underlying_error="no usage metrics provider configured",
            )

        try:
            usage = await self.metrics.get_usage_metrics(
                credential_id,
                metric_type,
                time_window,
            )
            return float(usage)
        except Exception as e:
            raise UsageLookupError(
                policy_id=policy.id,
                metric_type=metric_type,
                underlying_error=str(e),
            ) from e

    async def _evaluate_usage_threshold(
        self,
        request: ProxyRequest,
        policy: Policy,
    ) -> PolicyEvaluationResult:
        config = self._parse_config(policy, UsageThresholdConfig)

        try:
            usage = await self._lookup_usage(
                policy,
                request.credential_id,
                config.threshold_type,
                config.time_window,
            )
        except UsageLookupError as e:
            # Fail closed
            logger.error(
                "usage_threshold_lookup_failed",
                policy_id=policy.id,
                credential_id=request.credential_id,
                error=e.underlying_error,
            )
            return PolicyEvaluationResult.deny(
                f"Unable to determine current usage: {e.underlying_error}",
                policy_id=policy.id,
            )

        if usage >= config.max_value:
            return PolicyEvaluationResult.deny(
                f"Usage threshold of {config.max_value:g} for "
                f"{config.threshold_type} has been reached",
                policy_id=policy.id,
            )

        return PolicyEvaluationResult.approve(policy_id=policy.id)

    async def _evaluate_rate_limiting(
        self,
        request: ProxyRequest,
        policy: Policy,
    ) -> PolicyEvaluationResult:
        config = self._parse_config(policy, RateLimitingConfig)

        if config.operation and config.operation != request.operation:
            return PolicyEvaluationResult.approve(policy_id=policy.id)

        try:
            request_count = await self._lookup_usage(
                policy,
                request.credential_id,
                "request_count",
                config.time_window,
            )
        except UsageLookupError as e:
            # Fail open
            logger.error(
                "rate_limit_lookup_failed",
                policy_id=policy.id,
                credential_id=request.credential_id,
                error=e.underlying_error,
            )
            return PolicyEvaluationResult.approve(policy_id=policy.id)

        if request_count >= config.max_requests:
            return PolicyEvaluationResult.deny(
                f"Rate limit exceeded: {request_count:g}/{config.max_requests} "
                f"requests in {config.time_window}",
                policy_id=policy.id,
            )

        return PolicyEvaluationResult.approve(policy_id=policy.id)

    # =========================================================================
    # Context-Aware Policies
    # =========================================================================

    def _context_value(self, factor: str) -> tuple[bool, Any]:
        """
        Observe a context factor.

        Returns (available, value). Factors without a data source are
        unavailable and never match.
        """
        if factor == ContextFactor.TIME_OF_DAY.value:
            return True, self.clock().hour
        if factor == ContextFactor.DAY_OF_WEEK.value:
            # 0 == Sunday
            return True, (self.clock().weekday() + 1) % 7
        if factor in (
            ContextFactor.REQUEST_FREQUENCY.value,
            ContextFactor.PREVIOUS_USAGE.value,
            ContextFactor.LOCATION.value,
        ):
            return False, None

        logger.warning("unknown_context_factor", factor=factor)
        return False, None

    async def _evaluate_context_aware(
        self,
        request: ProxyRequest,
        policy: Policy,
    ) -> PolicyEvaluationResult:
        config = self._parse_config(policy, ContextAwareConfig)

        for condition in config.conditions:
            available, observed = self._context_value(condition.factor)
            if not available:
                continue
            if not evaluate_condition(observed, condition.operator, condition.value):
                continue

            if condition.action == ConditionAction.ALLOW.value:
                return PolicyEvaluationResult.approve(policy_id=policy.id)
            if condition.action == ConditionAction.DENY.value:
                return PolicyEvaluationResult.deny(
                    f"Context condition for {condition.factor} resulted in deny",
                    policy_id=policy.id,
                )
            if condition.action == ConditionAction.REQUIRE_APPROVAL.value:
                return PolicyEvaluationResult.pending(
                    "Context condition requires manual approval",
                    policy_id=policy.id,
                )
            # Unrecognised action: fall through to the next condition

        if config.default_action == ConditionAction.ALLOW.value:
            return PolicyEvaluationResult.approve(policy_id=policy.id)
        if config.default_action == ConditionAction.DENY.value:
            return PolicyEvaluationResult.deny(
                "No context conditions matched, default action is deny",
                policy_id=policy.id,
            )
        if config.default_action == ConditionAction.REQUIRE_APPROVAL.value:
            return PolicyEvaluationResult.pending(
                "No context conditions matched, default action is manual approval",
                policy_id=policy.id,
            )

        return PolicyEvaluationResult.deny(
            f"Unknown default action: {config.default_action}",
            policy_id=policy.id,
        )


def _type_name(policy_type: PolicyType | str) -> str:
    return policy_type.value if isinstance(policy_type, PolicyType) else str(policy_type)
