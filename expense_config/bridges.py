"""
Config -> Kernel Bridges.

Functions that convert parsed ``OrganizationDefinition`` artifacts into
kernel inputs.  They live in expense_config (the producer) because the
kernel must NEVER import expense_config.

Usage:
    from expense_config.bridges import apply_organization, build_directory

    org = load_organization(path)
    directory = build_directory(org)
    apply_organization(org, catalog, claims)
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any
from uuid import UUID, uuid5

from expense_config.schema import OrganizationDefinition, RuleDefinition
from expense_kernel.domain.approval import (
    AmountThreshold,
    ApprovalRule,
    RuleApprover,
    RuleKind,
)
from expense_kernel.domain.directory import DirectoryUser, InMemoryOrgDirectory
from expense_kernel.services.claim_service import ClaimService
from expense_kernel.services.rule_catalog import RuleCatalogService

# Fixed namespace for deterministic user UUIDs when the YAML omits ``id``.
_USER_UUID_NAMESPACE = UUID("6f1d3c2e-8a4b-4e9f-b7d1-0c5a2e9f4b38")


def user_ids(org: OrganizationDefinition) -> dict[str, UUID]:
    """Map every user key to its UUID (explicit or derived from org + key)."""
    return {
        u.key: u.user_id or uuid5(_USER_UUID_NAMESPACE, f"{org.org_id}:{u.key}")
        for u in org.users
    }


def build_directory(
    org: OrganizationDefinition,
    directory: InMemoryOrgDirectory | None = None,
) -> InMemoryOrgDirectory:
    """Populate an in-memory directory with the organization's users."""
    directory = directory or InMemoryOrgDirectory()
    ids = user_ids(org)
    for user in org.users:
        directory.add(
            DirectoryUser(
                user_id=ids[user.key],
                org_id=org.org_id,
                role=user.role,
                manager_id=ids[user.manager] if user.manager else None,
                name=user.name or user.key,
            )
        )
    return directory


def rule_from_definition(
    definition: RuleDefinition,
    org: OrganizationDefinition,
) -> dict[str, Any]:
    """Keyword arguments for ``RuleCatalogService.create_rule``."""
    ids = user_ids(org)
    return {
        "org_id": org.org_id,
        "name": definition.name,
        "kind": RuleKind(definition.kind),
        "description": definition.description,
        "approvers": tuple(
            RuleApprover(
                approver_id=ids[a.user],
                sequence_index=a.sequence,
                role_label=a.role,
            )
            for a in definition.approvers
        ),
        "percentage_required": definition.percentage_required,
        "excluded_roles": frozenset(definition.excluded_roles),
        "specific_approver_id": (
            ids[definition.specific_approver] if definition.specific_approver else None
        ),
        "require_manager_first": definition.require_manager_first,
        "threshold": AmountThreshold(
            min_amount=Decimal(definition.min_amount),
            max_amount=(
                Decimal(definition.max_amount) if definition.max_amount is not None else None
            ),
        ),
        "categories": frozenset(definition.categories),
        "active": definition.active,
    }


def apply_organization(
    org: OrganizationDefinition,
    catalog: RuleCatalogService,
    claims: ClaimService,
) -> list[ApprovalRule]:
    """Store the organization's settings and rules.

    Rules are matched to stored ones by name: a match is updated (and its
    version bumped), anything else is created.  Stored rules missing from
    the YAML are left alone.
    """
    claims.set_organization_settings(
        org.org_id,
        base_currency=org.base_currency,
        manager_is_approver=org.manager_is_approver,
    )

    existing = {r.name: r for r in catalog.list_rules(org.org_id)}
    stored: list[ApprovalRule] = []
    for definition in org.rules:
        kwargs = rule_from_definition(definition, org)
        current = existing.get(definition.name)
        if current is None:
            stored.append(catalog.create_rule(**kwargs))
        else:
            kwargs.pop("org_id")
            stored.append(catalog.update_rule(current.rule_id, **kwargs))
    return stored
