"""
Built-in policy template catalog.

The catalog is an immutable table of PolicyTemplate entries, read once from
the packaged templates.yaml. Each template is tagged with the credential
types it applies to and whether it is recommended by default.

Usage:
    from credproxy.templates.catalog import get_recommended_templates

    for template in get_recommended_templates("ethereum"):
        print(template.id, template.priority)
"""

from collections.abc import Iterable, Iterator
from functools import lru_cache
from importlib import resources
from typing import Any

import yaml

from credproxy.schema import PolicyTemplate, TemplateCategory

TEMPLATES_RESOURCE = "templates.yaml"


class PolicyTemplateCatalog:
    """
    Read-only lookup over a fixed set of policy templates.

    Template order is preserved; it determines the order in which
    recommended templates are applied.
    """

    def __init__(self, templates: Iterable[PolicyTemplate]) -> None:
        self._templates: tuple[PolicyTemplate, ...] = tuple(templates)
        self._by_id: dict[str, PolicyTemplate] = {}
        for template in self._templates:
            if template.id in self._by_id:
                msg = f"Duplicate template id: {template.id}"
                raise ValueError(msg)
            self._by_id[template.id] = template

    def __len__(self) -> int:
        return len(self._templates)

    def __iter__(self) -> Iterator[PolicyTemplate]:
        return iter(self._templates)

    def __contains__(self, template_id: object) -> bool:
        return template_id in self._by_id

    @classmethod
    def from_data(cls, data: dict[str, Any]) -> "PolicyTemplateCatalog":
        """Build a catalog from a parsed `{templates: [...]}` mapping."""
        entries = (data or {}).get("templates") or []
        return cls(PolicyTemplate.model_validate(entry) for entry in entries)

    @classmethod
    def from_yaml(cls, content: str) -> "PolicyTemplateCatalog":
        return cls.from_data(yaml.safe_load(content))

    def all_templates(self) -> tuple[PolicyTemplate, ...]:
        return self._templates

    def get_template_by_id(self, template_id: str) -> PolicyTemplate | None:
        return self._by_id.get(template_id)

    def get_templates_for_credential_type(self, credential_type: str) -> list[PolicyTemplate]:
        """Templates whose credential_types include the given type."""
        return [t for t in self._templates if credential_type in t.credential_types]

    def get_recommended_templates(self, credential_type: str) -> list[PolicyTemplate]:
        """Recommended templates for a credential type, in catalog order."""
        return [
            t
            for t in self.get_templates_for_credential_type(credential_type)
            if t.is_recommended
        ]

    def get_templates_by_category(
        self,
        category: TemplateCategory | str,
    ) -> list[PolicyTemplate]:
        category = TemplateCategory(category)
        return [t for t in self._templates if t.category == category]


@lru_cache(maxsize=1)
def default_catalog() -> PolicyTemplateCatalog:
    """The built-in catalog, loaded from package data on first use."""
    content = resources.files(__package__).joinpath(TEMPLATES_RESOURCE).read_text(
        encoding="utf-8"
    )
    return PolicyTemplateCatalog.from_yaml(content)


def get_template_by_id(template_id: str) -> PolicyTemplate | None:
    return default_catalog().get_template_by_id(template_id)


def get_templates_for_credential_type(credential_type: str) -> list[PolicyTemplate]:
    return default_catalog().get_templates_for_credential_type(credential_type)


def get_recommended_templates(credential_type: str) -> list[PolicyTemplate]:
    return default_catalog().get_recommended_templates(credential_type)
