"""
Policy templates for credproxy.

Templates are named, credential-type-scoped policy presets used to bootstrap
a credential's policy set. The catalog is fixed at build time; the service
instantiates templates as concrete policies.
"""

from credproxy.templates.catalog import (
    PolicyTemplateCatalog,
    default_catalog,
    get_recommended_templates,
    get_template_by_id,
    get_templates_for_credential_type,
)
from credproxy.templates.service import PolicyTemplateService

__all__ = [
    "PolicyTemplateCatalog",
    "PolicyTemplateService",
    "default_catalog",
    "get_recommended_templates",
    "get_template_by_id",
    "get_templates_for_credential_type",
]
