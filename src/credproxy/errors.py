"""
Exception hierarchy for credproxy.

All credproxy exceptions inherit from CredproxyError, allowing callers to
catch every library-specific exception with a single except clause.

Exception Categories:
    - PolicyError: A policy could not be evaluated or is malformed
    - TemplateError: A template could not be applied to a credential
    - StoreError: A policy/credential store operation failed
    - ConfigurationError: The engine was wired incorrectly

Evaluation errors never reach the proxy layer: the evaluator converts them
into DENIED results. Template errors are converted into "not applicable"
(None) by the template service. Store errors propagate.
"""

from dataclasses import dataclass, field
from typing import Any


# =============================================================================
# Error Codes
# =============================================================================

# Policy errors: 1xxx
ERROR_POLICY_UNKNOWN_TYPE = 1001
ERROR_POLICY_INVALID_CONFIG = 1002
ERROR_POLICY_USAGE_LOOKUP = 1003

# Template errors: 2xxx
ERROR_TEMPLATE_NOT_FOUND = 2001
ERROR_TEMPLATE_CREDENTIAL_NOT_FOUND = 2002
ERROR_TEMPLATE_INCOMPATIBLE = 2003

# Store errors: 3xxx
ERROR_STORE_CONNECTION = 3001
ERROR_STORE_WRITE = 3002
ERROR_STORE_READ = 3003

# Configuration errors: 4xxx
ERROR_CONFIGURATION = 4001


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class CredproxyError(Exception):
    """
    Base exception for all credproxy errors.

    Attributes:
        message: Human-readable error description
        code: Numeric error code for programmatic handling
        suggestion: Optional hint for how to resolve the error
        context: Optional dict with additional debugging info
    """

    message: str = ""
    code: int = 0
    suggestion: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Format error for display."""
        parts = [f"[E{self.code}] {self.message}"]
        if self.suggestion:
            parts.append(f"\nSuggestion: {self.suggestion}")
        return "".join(parts)

    def __repr__(self) -> str:
        """Format error for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
            "context": self.context,
        }


# =============================================================================
# Policy Errors
# =============================================================================


@dataclass
class PolicyError(CredproxyError):
    """
    Base class for errors raised while evaluating a single policy.

    Attributes:
        policy_id: ID of the policy being evaluated
    """

    policy_id: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["policy_id"] = self.policy_id


@dataclass
class UnknownPolicyTypeError(PolicyError):
    """Raised when a policy carries a type the evaluator has no handler for."""

    policy_type: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Unknown policy type: {self.policy_type}"
        if self.code == 0:
            self.code = ERROR_POLICY_UNKNOWN_TYPE
        super().__post_init__()
        self.context["policy_type"] = self.policy_type


@dataclass
class PolicyConfigError(PolicyError):
    """Raised when a policy config does not match its type's schema."""

    validation_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid policy config: {self.validation_error}"
        if self.code == 0:
            self.code = ERROR_POLICY_INVALID_CONFIG
        if not self.suggestion:
            self.suggestion = "Run `credproxy validate` on the policy file"
        super().__post_init__()
        self.context["validation_error"] = self.validation_error


@dataclass
class UsageLookupError(PolicyError):
    """Raised when the usage metrics provider cannot answer."""

    metric_type: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Usage lookup for {self.metric_type} failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_POLICY_USAGE_LOOKUP
        super().__post_init__()
        self.context.update({
            "metric_type": self.metric_type,
            "underlying_error": self.underlying_error,
        })


# =============================================================================
# Template Errors
# =============================================================================


@dataclass
class TemplateError(CredproxyError):
    """
    Base class for template application errors.

    Attributes:
        template_id: ID of the template being applied
        credential_id: ID of the target credential
    """

    template_id: str = ""
    credential_id: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context.update({
            "template_id": self.template_id,
            "credential_id": self.credential_id,
        })


@dataclass
class TemplateNotFoundError(TemplateError):
    """Raised when a template ID is not in the catalog."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Template not found: {self.template_id}"
        if self.code == 0:
            self.code = ERROR_TEMPLATE_NOT_FOUND
        if not self.suggestion:
            self.suggestion = "List available templates with `credproxy templates`"
        super().__post_init__()


@dataclass
class CredentialNotFoundError(TemplateError):
    """Raised when the target credential does not exist."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Credential not found: {self.credential_id}"
        if self.code == 0:
            self.code = ERROR_TEMPLATE_CREDENTIAL_NOT_FOUND
        super().__post_init__()


@dataclass
class IncompatibleCredentialTypeError(TemplateError):
    """Raised when a template does not apply to the credential's type."""

    credential_type: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f"Template {self.template_id} is not compatible with "
                f"credential type {self.credential_type}"
            )
        if self.code == 0:
            self.code = ERROR_TEMPLATE_INCOMPATIBLE
        super().__post_init__()
        self.context["credential_type"] = self.credential_type


# =============================================================================
# Store Errors
# =============================================================================


@dataclass
class StoreError(CredproxyError):
    """
    Base class for store errors.

    Attributes:
        operation: The operation that failed (e.g., "create_policy")
    """

    operation: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["operation"] = self.operation


@dataclass
class StoreConnectionError(StoreError):
    """Raised when the database connection fails."""

    db_path: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to connect to database: {self.db_path}"
        if self.code == 0:
            self.code = ERROR_STORE_CONNECTION
        if not self.suggestion:
            self.suggestion = "Check that the database path is valid and writable"
        super().__post_init__()
        self.context["db_path"] = self.db_path


@dataclass
class StoreWriteError(StoreError):
    """Raised when a write operation fails."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Database write failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_STORE_WRITE
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class StoreReadError(StoreError):
    """Raised when a read operation fails."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Database read failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_STORE_READ
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


# =============================================================================
# Configuration Errors
# =============================================================================


@dataclass
class ConfigurationError(CredproxyError):
    """Raised when an engine component is constructed with an invalid setup."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if self.code == 0:
            self.code = ERROR_CONFIGURATION
