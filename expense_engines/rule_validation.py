"""
expense_engines.rule_validation -- Per-kind validation of approval rules.

Responsibility:
    The single place that decides whether an ``ApprovalRule`` is well
    formed for its ``RuleKind`` and whether a user may hold an approval
    slot.  Called by the rule catalog on every create and update.

Architecture position:
    Engines -- pure validation, zero I/O.  Directory lookups go through the
    injected ``OrgDirectory`` protocol.

Invariants enforced:
    - sequential/hybrid rules have a non-empty approver list.
    - percentage/hybrid rules carry ``percentage_required`` in 1..100.
    - specific/hybrid rules carry ``specific_approver_id``.
    - Every referenced approver belongs to the rule's organization and
      passes ``is_approval_eligible``.

Failure modes:
    - RuleValidationError with the offending rule name and a reason.
"""

from __future__ import annotations

from uuid import UUID

from expense_kernel.domain.approval import (
    APPROVAL_ELIGIBLE_ROLES,
    PERCENTAGE_EXCLUDABLE_ROLES,
    ApprovalRule,
    RuleKind,
)
from expense_kernel.domain.directory import OrgDirectory
from expense_kernel.exceptions import RuleValidationError

_KINDS_NEEDING_APPROVERS = frozenset({RuleKind.SEQUENTIAL, RuleKind.HYBRID})
_KINDS_NEEDING_PERCENTAGE = frozenset({RuleKind.PERCENTAGE, RuleKind.HYBRID})
_KINDS_NEEDING_SPECIFIC = frozenset({RuleKind.SPECIFIC, RuleKind.HYBRID})


def is_approval_eligible(role: str | None) -> bool:
    """Capability predicate: may a user with ``role`` hold an approval slot?"""
    return role is not None and role in APPROVAL_ELIGIBLE_ROLES


def validate_rule(rule: ApprovalRule, directory: OrgDirectory | None = None) -> None:
    """Validate ``rule`` for its kind.

    Args:
        rule: The rule to check.
        directory: When given, every approver is checked for organization
            membership and approval eligibility.

    Raises:
        RuleValidationError: on the first problem found.
    """
    name = rule.name or "<unnamed>"

    if not rule.name or not rule.name.strip():
        raise RuleValidationError(name, "name is required")

    try:
        kind = RuleKind(rule.kind)
    except ValueError:
        raise RuleValidationError(name, f"unknown rule kind {rule.kind!r}") from None

    if kind in _KINDS_NEEDING_APPROVERS and not rule.approvers:
        raise RuleValidationError(
            name, f"approvers are required for {kind.value} rules",
        )

    if kind in _KINDS_NEEDING_PERCENTAGE:
        if rule.percentage_required is None:
            raise RuleValidationError(
                name, f"percentage_required is required for {kind.value} rules",
            )
        if not 1 <= rule.percentage_required <= 100:
            raise RuleValidationError(
                name,
                f"percentage_required must be between 1 and 100, got {rule.percentage_required}",
            )

    if kind in _KINDS_NEEDING_SPECIFIC and rule.specific_approver_id is None:
        raise RuleValidationError(
            name, f"specific_approver_id is required for {kind.value} rules",
        )

    unknown_roles = set(rule.excluded_roles) - PERCENTAGE_EXCLUDABLE_ROLES
    if unknown_roles:
        raise RuleValidationError(
            name, f"roles cannot be excluded from percentage: {sorted(unknown_roles)}",
        )

    threshold = rule.threshold
    if threshold.min_amount < 0:
        raise RuleValidationError(name, "threshold minimum cannot be negative")
    if threshold.max_amount is not None and threshold.max_amount < threshold.min_amount:
        raise RuleValidationError(
            name,
            f"threshold maximum {threshold.max_amount} is below minimum {threshold.min_amount}",
        )

    if directory is not None:
        for approver in rule.approvers:
            _check_approver(name, rule.org_id, approver.approver_id, directory)
        if rule.specific_approver_id is not None:
            _check_approver(name, rule.org_id, rule.specific_approver_id, directory)


def _check_approver(
    rule_name: str,
    org_id: UUID,
    approver_id: UUID,
    directory: OrgDirectory,
) -> None:
    if not directory.belongs_to(approver_id, org_id):
        raise RuleValidationError(
            rule_name, f"approver {approver_id} does not belong to organization {org_id}",
        )
    role = directory.get_role(approver_id)
    if not is_approval_eligible(role):
        raise RuleValidationError(
            rule_name, f"approver {approver_id} with role {role!r} cannot approve expenses",
        )
