"""
Policy template application.

The PolicyTemplateService turns a catalog template into a concrete Policy
attached to a credential:

    1. Resolve the template
    2. Load the credential and check its type is covered by the template
    3. Start from the template config; for operations-based templates with
       no operations, fill them from the plugin's operation risk levels
    4. Merge the plugin's override for this template, then caller
       customization, on top
    5. Persist the policy through the policy store

Template problems (missing template, missing credential, type mismatch)
make apply_template return None instead of raising, so bulk operations can
skip a template and continue. Store failures propagate.

Note that apply_template is not idempotent: applying the same template
twice creates two policies. apply_default_policies is the guarded entry
point for newly created credentials.
"""

import uuid
from typing import Any

from credproxy.errors import (
    CredentialNotFoundError,
    CredproxyError,
    IncompatibleCredentialTypeError,
    TemplateError,
    TemplateNotFoundError,
)
from credproxy.interfaces import CredentialStore, PluginRegistry, PolicyStore
from credproxy.observability import get_logger
from credproxy.schema import Credential, Policy, PolicyTemplate, PolicyType
from credproxy.templates.catalog import PolicyTemplateCatalog, default_catalog

logger = get_logger(__name__)

OPERATIONS_BASED_TYPES = frozenset({
    PolicyType.ALLOW_LIST,
    PolicyType.DENY_LIST,
    PolicyType.MANUAL_APPROVAL,
})

# Risk levels run 0-10.
HIGH_RISK_THRESHOLD = 7
LOW_RISK_THRESHOLD = 3


def generate_policy_id() -> str:
    return str(uuid.uuid4())


class PolicyTemplateService:
    """
    Applies policy templates to credentials.

    Attributes:
        policy_store: Where created policies are persisted
        credential_store: Source of credential metadata
        plugins: Credential plugin lookup (operation risk levels, overrides)
        catalog: Template catalog to resolve IDs against
    """

    def __init__(
        self,
        policy_store: PolicyStore,
        credential_store: CredentialStore,
        plugins: PluginRegistry | None = None,
        catalog: PolicyTemplateCatalog | None = None,
    ) -> None:
        self.policy_store = policy_store
        self.credential_store = credential_store
        self.plugins = plugins
        self.catalog = catalog or default_catalog()

    async def apply_template(
        self,
        template_id: str,
        credential_id: str,
        application_id: str | None = None,
        customization: dict[str, Any] | None = None,
    ) -> Policy | None:
        """
        Create a policy for a credential from a template.

        Args:
            template_id: Catalog template to apply
            credential_id: Credential to attach the policy to
            application_id: Optional application to restrict the policy to
            customization: Config values that override the template's

        Returns:
            The created Policy, or None when the template does not apply
        """
        try:
            template, credential = await self._resolve(template_id, credential_id)
        except TemplateError as e:
            logger.error(
                "template_not_applicable",
                template_id=template_id,
                credential_id=credential_id,
                error=e.message,
            )
            return None

        config = self.build_config(template, credential, customization)

        policy = Policy(
            id=generate_policy_id(),
            type=template.type,
            name=template.name,
            description=template.description,
            scope=template.scope,
            application_id=application_id,
            credential_id=credential_id,
            config=config,
            priority=template.priority,
            is_active=True,
        )
        created = await self.policy_store.create_policy(policy)

        logger.info(
            "template_applied",
            template_id=template_id,
            credential_id=credential_id,
            policy_id=created.id,
        )
        return created

    async def apply_recommended_templates(self, credential_id: str) -> list[Policy]:
        """
        Apply every recommended template for the credential's type.

        Templates that do not apply, or fail to persist, are skipped.
        """
        credential = await self.credential_store.get_credential(credential_id)
        if credential is None:
            logger.error("credential_not_found", credential_id=credential_id)
            return []

        policies: list[Policy] = []
        for template in self.catalog.get_recommended_templates(credential.type.lower()):
            try:
                policy = await self.apply_template(template.id, credential_id)
            except Exception as e:
                logger.error(
                    "template_apply_failed",
                    template_id=template.id,
                    credential_id=credential_id,
                    error=e.message if isinstance(e, CredproxyError) else str(e),
                )
                continue
            if policy is not None:
                policies.append(policy)

        logger.info(
            "recommended_templates_applied",
            credential_id=credential_id,
            count=len(policies),
        )
        return policies

    async def has_any_policies(self, credential_id: str) -> bool:
        return await self.policy_store.count_policies(credential_id) > 0

    async def apply_default_policies(self, credential_id: str) -> list[Policy]:
        """Apply recommended templates only if the credential has no policies yet."""
        if await self.has_any_policies(credential_id):
            logger.info("default_policies_skipped", credential_id=credential_id)
            return []

        return await self.apply_recommended_templates(credential_id)

    async def _resolve(
        self,
        template_id: str,
        credential_id: str,
    ) -> tuple[PolicyTemplate, Credential]:
        template = self.catalog.get_template_by_id(template_id)
        if template is None:
            raise TemplateNotFoundError(template_id=template_id, credential_id=credential_id)

        credential = await self.credential_store.get_credential(credential_id)
        if credential is None:
            raise CredentialNotFoundError(template_id=template_id, credential_id=credential_id)

        if credential.type.lower() not in template.credential_types:
            raise IncompatibleCredentialTypeError(
                template_id=template_id,
                credential_id=credential_id,
                credential_type=credential.type,
            )

        return template, credential

    def build_config(
        self,
        template: PolicyTemplate,
        credential: Credential,
        customization: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Compute the config a policy created from this template would get.

        Customization is merged last and wins over plugin-derived values.
        """
        config = dict(template.config_template)

        plugin = self.plugins.get_plugin(credential.type.lower()) if self.plugins else None
        if plugin is not None:
            if template.type in OPERATIONS_BASED_TYPES and not config.get("operations"):
                if template.type == PolicyType.MANUAL_APPROVAL:
                    config["operations"] = [
                        op.name
                        for op in plugin.supported_operations
                        if op.risk_level >= HIGH_RISK_THRESHOLD
                    ]
                elif template.type == PolicyType.ALLOW_LIST:
                    config["operations"] = [
                        op.name
                        for op in plugin.supported_operations
                        if op.risk_level <= LOW_RISK_THRESHOLD
                    ]

            override = next(
                (
                    pt
                    for pt in plugin.policy_templates
                    if pt.policy_type == template.type and pt.id == template.id
                ),
                None,
            )
            if override is not None:
                config.update(override.configuration)

        if customization:
            config.update(customization)

        return config
