"""
Schema definitions for credproxy.

This module defines the Pydantic models used throughout credproxy:
- ProxyRequest: An application's request to use a stored credential
- Policy: A persisted access-control rule of one PolicyType
- PolicyEvaluationResult: The decision produced for a request
- PolicyTemplate: A named, credential-type-scoped policy preset
- Per-type config models: the shape of Policy.config for each PolicyType

Design Decisions:
    - Fields are snake_case in Python and accept the camelCase names used on
      the wire (applicationId, isActive, ...), so YAML/JSON in either style
      validates
    - Models are immutable where possible (frozen=True)
    - Policy.config stays an open mapping; evaluators parse it through the
      model registered for the policy's type in POLICY_CONFIG_MODELS
"""

from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# =============================================================================
# Enums
# =============================================================================


class PolicyType(str, Enum):
    """The eleven supported policy variants."""

    ALLOW_LIST = "ALLOW_LIST"
    DENY_LIST = "DENY_LIST"
    TIME_BASED = "TIME_BASED"
    COUNT_BASED = "COUNT_BASED"
    MANUAL_APPROVAL = "MANUAL_APPROVAL"
    PATTERN_MATCH = "PATTERN_MATCH"
    USAGE_THRESHOLD = "USAGE_THRESHOLD"
    IP_RESTRICTION = "IP_RESTRICTION"
    RATE_LIMITING = "RATE_LIMITING"
    APPROVAL_CHAIN = "APPROVAL_CHAIN"
    CONTEXT_AWARE = "CONTEXT_AWARE"


# Escalation gates pre-empt priority-ordered evaluation, in this order.
ESCALATION_TYPES: tuple[PolicyType, ...] = (
    PolicyType.MANUAL_APPROVAL,
    PolicyType.APPROVAL_CHAIN,
)


class PolicyStatus(str, Enum):
    """Outcome of evaluating a request."""

    APPROVED = "APPROVED"
    DENIED = "DENIED"
    PENDING = "PENDING"


class PolicyScope(str, Enum):
    """
    Where a policy applies.

    GLOBAL policies apply to every credential of a type, CREDENTIAL policies
    to one credential, APPLICATION policies to one application's use of a
    credential.
    """

    GLOBAL = "GLOBAL"
    CREDENTIAL = "CREDENTIAL"
    APPLICATION = "APPLICATION"


class TemplateCategory(str, Enum):
    """Grouping used when presenting policy templates."""

    SECURITY = "Security"
    ACCESS_CONTROL = "Access Control"
    USAGE_LIMITS = "Usage Limits"
    MONITORING = "Monitoring"
    APPROVAL = "Approval Workflow"


class ConditionAction(str, Enum):
    """Action taken when a context-aware condition (or its default) fires."""

    ALLOW = "allow"
    DENY = "deny"
    REQUIRE_APPROVAL = "require_approval"


class ConditionOperator(str, Enum):
    """Comparison operators understood by the condition matcher."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"


class ContextFactor(str, Enum):
    """Contextual factors a context-aware condition can test."""

    TIME_OF_DAY = "time_of_day"
    DAY_OF_WEEK = "day_of_week"
    REQUEST_FREQUENCY = "request_frequency"
    PREVIOUS_USAGE = "previous_usage"
    LOCATION = "location"


# =============================================================================
# Base Models
# =============================================================================


class WireModel(BaseModel):
    """Frozen model that accepts both snake_case names and camelCase aliases."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
        alias_generator=to_camel,
    )


class PolicyConfigModel(BaseModel):
    """
    Base for per-type policy configs.

    Unknown keys are ignored: stored configs carry fields the evaluator does
    not read (approvers, autoExpireMinutes, ...).
    """

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )


# =============================================================================
# Request / Policy / Result
# =============================================================================


class ProxyRequest(WireModel):
    """
    A third-party application's request to perform an operation with a
    stored credential.

    Attributes:
        id: Unique identifier of this request
        application_id: The requesting application
        credential_id: The credential the operation would use
        operation: Operation name (e.g., "getBalance", "read")
        parameters: Operation parameters
        timestamp: When the request was made
        ip: Source IP address of the request, if known
    """

    id: str = Field(..., description="Unique identifier of this request")
    application_id: str = Field(..., description="Requesting application")
    credential_id: str = Field(..., description="Target credential")
    operation: str = Field(..., description="Operation name", min_length=1)
    parameters: dict[str, Any] = Field(
        default_factory=dict,
        description="Operation parameters",
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When the request was made",
    )
    ip: str | None = Field(default=None, description="Source IP address")


class Policy(WireModel):
    """
    A persisted access-control rule.

    The engine treats policies as read-only inputs. `type` holds a PolicyType
    when the value is recognised; any other string is kept as-is so the
    evaluator can deny it explicitly.

    Attributes:
        id: Unique identifier
        type: Policy variant
        name: Human-readable name (used in denial reasons)
        description: Optional description
        scope: GLOBAL, CREDENTIAL or APPLICATION
        application_id: Application the policy is restricted to
        credential_id: Credential the policy is attached to
        credential_type_id: Credential type for GLOBAL policies
        config: Variant-shaped configuration
        priority: Higher values are evaluated first
        is_active: Inactive policies are ignored
    """

    id: str = Field(..., description="Unique identifier")
    type: PolicyType | str = Field(
        ...,
        description="Policy variant",
        union_mode="left_to_right",
    )
    name: str = Field(..., description="Human-readable name")
    description: str | None = Field(default=None, description="Optional description")
    scope: PolicyScope = Field(
        default=PolicyScope.CREDENTIAL,
        description="Where the policy applies",
    )
    application_id: str | None = Field(default=None, description="Restricting application")
    credential_id: str | None = Field(default=None, description="Attached credential")
    credential_type_id: str | None = Field(
        default=None,
        description="Credential type for global policies",
    )
    config: dict[str, Any] = Field(
        default_factory=dict,
        description="Variant-shaped configuration",
    )
    priority: int = Field(default=0, description="Higher values are evaluated first")
    is_active: bool = Field(default=True, description="Inactive policies are ignored")


class PolicyEvaluationResult(WireModel):
    """
    Result of evaluating a request against one policy or a policy set.

    Attributes:
        status: APPROVED, DENIED or PENDING
        policy_id: The policy that produced this result, if any
        reason: Human-readable explanation
        requires_approval: True when a human or workflow must approve
    """

    status: PolicyStatus = Field(..., description="Decision")
    policy_id: str | None = Field(default=None, description="Deciding policy")
    reason: str | None = Field(default=None, description="Explanation")
    requires_approval: bool = Field(
        default=False,
        description="Whether escalation to an approver is required",
    )

    @property
    def approved(self) -> bool:
        return self.status == PolicyStatus.APPROVED

    @classmethod
    def approve(
        cls,
        policy_id: str | None = None,
        reason: str | None = None,
    ) -> "PolicyEvaluationResult":
        """Create an APPROVED result."""
        return cls(status=PolicyStatus.APPROVED, policy_id=policy_id, reason=reason)

    @classmethod
    def deny(cls, reason: str, policy_id: str | None = None) -> "PolicyEvaluationResult":
        """Create a DENIED result."""
        return cls(status=PolicyStatus.DENIED, policy_id=policy_id, reason=reason)

    @classmethod
    def pending(cls, reason: str, policy_id: str | None = None) -> "PolicyEvaluationResult":
        """Create a PENDING result that requires approval."""
        return cls(
            status=PolicyStatus.PENDING,
            policy_id=policy_id,
            reason=reason,
            requires_approval=True,
        )


# =============================================================================
# Per-Type Policy Configs
# =============================================================================


class AllowListConfig(PolicyConfigModel):
    """Only listed operations (and required parameter values) pass."""

    operations: list[str] = Field(default_factory=list)
    parameters: dict[str, Any] = Field(default_factory=dict)


class DenyListConfig(PolicyConfigModel):
    """Listed operations and matching parameter values are denied."""

    operations: list[str] = Field(default_factory=list)
    parameters: dict[str, Any] = Field(default_factory=dict)


class RecurringSchedule(PolicyConfigModel):
    """Weekly access window. Empty lists match any day / any hour."""

    days_of_week: list[str] = Field(default_factory=list)
    hours_of_day: list[int] = Field(default_factory=list)


class TimeBasedConfig(PolicyConfigModel):
    """
    Absolute and/or recurring access window.

    time_zone is accepted but not applied when evaluating the schedule.
    """

    start_time: datetime | None = None
    end_time: datetime | None = None
    time_zone: str = "UTC"
    recurring_schedule: RecurringSchedule | None = None


class CountBasedConfig(PolicyConfigModel):
    """Cap on the number of uses, reset every reset_period."""

    max_count: int = 0
    reset_period: str = "never"


class ManualApprovalConfig(PolicyConfigModel):
    """Escalate listed operations (or all, when the list is empty)."""

    operations: list[str] = Field(default_factory=list)
    approvers: list[str] = Field(default_factory=list)
    minimum_approvals: int | None = None
    auto_expire_minutes: int | None = None


class PatternRule(PolicyConfigModel):
    """A regex tested against one stringified request parameter."""

    parameter_name: str
    pattern: str
    allow: bool


class PatternMatchConfig(PolicyConfigModel):
    patterns: list[PatternRule] = Field(default_factory=list)


class UsageThresholdConfig(PolicyConfigModel):
    """Deny once a measured usage value reaches max_value within time_window."""

    threshold_type: str
    max_value: float
    time_window: str


class IpRestrictionConfig(PolicyConfigModel):
    """CIDR allow/deny lists with a fallback action."""

    allowed_ips: list[str] = Field(default_factory=list)
    denied_ips: list[str] = Field(default_factory=list)
    default_action: str = "deny"


class RateLimitingConfig(PolicyConfigModel):
    """Cap on request_count within time_window, optionally for one operation."""

    max_requests: int = 100
    time_window: int | str = "1h"
    operation: str | None = None
    per_ip: bool = False


class ApprovalStep(PolicyConfigModel):
    name: str
    approvers: list[str] = Field(default_factory=list)
    min_approvals: int = 1


class ApprovalChainConfig(PolicyConfigModel):
    """Ordered approval steps. Progression is handled by an external workflow."""

    approval_steps: list[ApprovalStep] = Field(default_factory=list)
    expiration_hours: int | None = None


class ContextCondition(PolicyConfigModel):
    """One `factor operator value -> action` rule."""

    factor: str
    operator: str
    value: Any = None
    action: str


class ContextAwareConfig(PolicyConfigModel):
    """Ordered conditions; the first match decides, else default_action."""

    conditions: list[ContextCondition] = Field(default_factory=list)
    default_action: str = "deny"


POLICY_CONFIG_MODELS: dict[PolicyType, type[PolicyConfigModel]] = {
    PolicyType.ALLOW_LIST: AllowListConfig,
    PolicyType.DENY_LIST: DenyListConfig,
    PolicyType.TIME_BASED: TimeBasedConfig,
    PolicyType.COUNT_BASED: CountBasedConfig,
    PolicyType.MANUAL_APPROVAL: ManualApprovalConfig,
    PolicyType.PATTERN_MATCH: PatternMatchConfig,
    PolicyType.USAGE_THRESHOLD: UsageThresholdConfig,
    PolicyType.IP_RESTRICTION: IpRestrictionConfig,
    PolicyType.RATE_LIMITING: RateLimitingConfig,
    PolicyType.APPROVAL_CHAIN: ApprovalChainConfig,
    PolicyType.CONTEXT_AWARE: ContextAwareConfig,
}


# =============================================================================
# Templates and Credential Metadata
# =============================================================================


class PolicyTemplate(WireModel):
    """
    A named policy preset, scoped to the credential types it applies to.

    Attributes:
        id: Template identifier (e.g., "read-only")
        name: Name given to policies created from this template
        description: What the template does
        type: Policy variant created
        category: Presentation grouping
        credential_types: Credential type IDs the template applies to
        config_template: Starting config for created policies
        scope: Scope of created policies
        priority: Priority of created policies
        is_recommended: Whether the template is applied by default
    """

    id: str
    name: str
    description: str
    type: PolicyType
    category: TemplateCategory
    credential_types: frozenset[str]
    config_template: dict[str, Any] = Field(default_factory=dict)
    scope: PolicyScope = PolicyScope.CREDENTIAL
    priority: int = 0
    is_recommended: bool = False


class Credential(WireModel):
    """The slice of a stored credential the template service needs."""

    id: str
    type: str
    name: str | None = None


class OperationInfo(WireModel):
    """An operation a credential plugin supports, with its risk level (0-10)."""

    name: str
    risk_level: int = Field(default=0, ge=0, le=10)
    description: str | None = None


class PluginTemplate(WireModel):
    """A plugin-specific override for one (policy type, template id) pair."""

    id: str
    policy_type: PolicyType
    configuration: dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# YAML Loading Helpers
# =============================================================================


def load_request(path: Path | str) -> ProxyRequest:
    """
    Load a proxy request from a YAML (or JSON) file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValidationError: If the content doesn't match the schema
    """
    path = Path(path)
    with path.open() as f:
        data = yaml.safe_load(f)

    return ProxyRequest.model_validate(data)


def load_policies(path: Path | str) -> list[Policy]:
    """
    Load a policy set from a YAML (or JSON) file.

    The file holds either a list of policies or a mapping with a
    `policies` key.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValidationError: If a policy doesn't match the schema
    """
    path = Path(path)
    with path.open() as f:
        data = yaml.safe_load(f)

    return _policies_from_data(data)


def load_request_from_string(content: str) -> ProxyRequest:
    """Load a proxy request from a YAML string."""
    data = yaml.safe_load(content)
    return ProxyRequest.model_validate(data)


def load_policies_from_string(content: str) -> list[Policy]:
    """Load a policy set from a YAML string."""
    data = yaml.safe_load(content)
    return _policies_from_data(data)


def _policies_from_data(data: Any) -> list[Policy]:
    if data is None:
        return []
    if isinstance(data, dict):
        data = data.get("policies") or []
    if not isinstance(data, list):
        msg = "Policy file must contain a list of policies"
        raise ValueError(msg)
    return [Policy.model_validate(item) for item in data]
