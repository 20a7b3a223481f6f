"""
Policy config validation.

Checks a policy config against the model registered for its type before it
is stored, so malformed policies are caught at write time instead of being
denied fail-closed at evaluation time.
"""

from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError
from pydantic.alias_generators import to_camel

from credproxy.schema import POLICY_CONFIG_MODELS, Policy, PolicyType

# Keys a stored config must carry explicitly, even where the model has a default.
REQUIRED_CONFIG_FIELDS: dict[PolicyType, tuple[str, ...]] = {
    PolicyType.ALLOW_LIST: ("operations",),
    PolicyType.DENY_LIST: ("operations",),
    PolicyType.TIME_BASED: (),
    PolicyType.COUNT_BASED: ("max_count",),
    PolicyType.MANUAL_APPROVAL: (),
    PolicyType.PATTERN_MATCH: ("patterns",),
    PolicyType.USAGE_THRESHOLD: ("threshold_type", "max_value", "time_window"),
    PolicyType.IP_RESTRICTION: ("default_action",),
    PolicyType.RATE_LIMITING: ("max_requests", "time_window"),
    PolicyType.APPROVAL_CHAIN: ("approval_steps",),
    PolicyType.CONTEXT_AWARE: ("conditions", "default_action"),
}


@dataclass(frozen=True)
class ValidationIssue:
    """One problem found in a config: where it is and what is wrong."""

    path: str
    message: str


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    errors: list[ValidationIssue] = field(default_factory=list)

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls(valid=True)

    @classmethod
    def fail(cls, *errors: ValidationIssue) -> "ValidationResult":
        return cls(valid=False, errors=list(errors))


def validate_policy_config(
    policy_type: PolicyType | str,
    config: dict[str, Any],
) -> ValidationResult:
    """
    Validate a config for the given policy type.

    Args:
        policy_type: The policy variant (enum member or its string value)
        config: The config mapping to check

    Returns:
        ValidationResult listing every problem found
    """
    try:
        resolved = PolicyType(policy_type)
    except ValueError:
        return ValidationResult.fail(
            ValidationIssue(path="type", message=f"Unsupported policy type: {policy_type}")
        )

    if not isinstance(config, dict):
        return ValidationResult.fail(
            ValidationIssue(path="config", message="Config must be a mapping")
        )

    issues: list[ValidationIssue] = []
    for name in REQUIRED_CONFIG_FIELDS[resolved]:
        alias = to_camel(name)
        if name not in config and alias not in config:
            issues.append(ValidationIssue(path=alias, message=f"{alias} is required"))

    try:
        POLICY_CONFIG_MODELS[resolved].model_validate(config)
    except ValidationError as e:
        for error in e.errors():
            path = ".".join(str(part) for part in error["loc"])
            issues.append(ValidationIssue(path=path, message=error["msg"]))

    if issues:
        return ValidationResult(valid=False, errors=issues)
    return ValidationResult.ok()


def validate_policy(policy: Policy) -> ValidationResult:
    """Validate a Policy's config against its type."""
    return validate_policy_config(policy.type, policy.config)
