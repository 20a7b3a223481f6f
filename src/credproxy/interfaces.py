"""
Collaborator interfaces consumed by the engine.

The evaluation core and the template service depend only on these
protocols. Concrete implementations (databases, metrics backends, plugin
managers) live outside the core; `credproxy.store.PolicyDB` is the
reference SQLite implementation of the two store protocols.
"""

from typing import Protocol, runtime_checkable

from credproxy.schema import Credential, OperationInfo, Policy, PluginTemplate


@runtime_checkable
class PolicyStore(Protocol):
    """Persistence for policies."""

    async def list_policies(
        self,
        credential_id: str,
        application_id: str | None = None,
    ) -> list[Policy]:
        """Return the policies applicable to a credential/application pair."""
        ...

    async def create_policy(self, policy: Policy) -> Policy:
        """Persist a new policy and return the stored version."""
        ...

    async def count_policies(self, credential_id: str) -> int:
        """Return how many policies are attached to a credential."""
        ...


@runtime_checkable
class CredentialStore(Protocol):
    """Read access to credential metadata."""

    async def get_credential(self, credential_id: str) -> Credential | None:
        ...


@runtime_checkable
class UsageMetricsProvider(Protocol):
    """Source of usage figures for USAGE_THRESHOLD and RATE_LIMITING policies."""

    async def get_usage_metrics(
        self,
        credential_id: str,
        metric_type: str,
        time_window: int | str,
    ) -> float:
        """
        Return the usage of `metric_type` for a credential within a window.

        Implementations raise on failure; the evaluator decides whether a
        failure denies or approves.
        """
        ...


@runtime_checkable
class UsageCounter(Protocol):
    """Atomic per-policy counter backing COUNT_BASED policies."""

    async def increment(self, policy_id: str, reset_period: str) -> int:
        """Count one use and return the total including it."""
        ...


class CredentialPlugin(Protocol):
    """Metadata a credential-type plugin reports to the template service."""

    supported_operations: list[OperationInfo]
    policy_templates: list[PluginTemplate]


class PluginRegistry(Protocol):
    """Lookup of credential plugins by credential type."""

    def get_plugin(self, credential_type: str) -> CredentialPlugin | None:
        ...
