"""
expense_engines.workflow_builder -- Materialize a claim's approval ledger.

Responsibility:
    Turn the resolved rule (or its absence) plus the claimant's manager into
    the ordered list of ``ApprovalEntry`` slots a claim must collect.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The manager and approver
    roles are supplied by the caller from the org directory.

Invariants enforced:
    - Sequence numbers are non-decreasing in creation order.
    - An injected manager-first step always sits alone at sequence 0.
    - Sequential rules give every approver its own, strictly increasing
      sequence; percentage, specific and hybrid rules put their whole
      voting group on one sequence.
    - The result is a snapshot: later rule edits never touch it.

Failure modes:
    - None.  An empty list is a legal result (no rule and no manager).
"""

from __future__ import annotations

from collections.abc import Callable
from uuid import UUID

from expense_engines.tracer import traced_engine
from expense_kernel.domain.approval import (
    MANAGER_ROLE,
    ApprovalEntry,
    ApprovalRule,
    RuleApprover,
    RuleKind,
)

RoleLookup = Callable[[UUID], "str | None"]


def _role_for(approver: RuleApprover, role_of: RoleLookup | None) -> str:
    if approver.role_label:
        return approver.role_label
    if role_of is not None:
        return role_of(approver.approver_id) or ""
    return ""


@traced_engine("workflow_builder", "1.0", fingerprint_fields=("rule", "manager_id"))
def build_workflow(
    *,
    rule: ApprovalRule | None,
    manager_id: UUID | None,
    manager_is_approver: bool = True,
    role_of: RoleLookup | None = None,
) -> list[ApprovalEntry]:
    """Build the approval entries for a new claim.

    Args:
        rule: The resolved rule, or None for the manager-only default.
        manager_id: The claimant's direct manager, if any.
        manager_is_approver: Organization setting consulted only when no
            rule applies.
        role_of: Directory role lookup, used when a rule approver carries
            no role label and for the specific approver.

    Returns:
        Entries in creation order, all PENDING.
    """
    if rule is None:
        if manager_is_approver and manager_id is not None:
            return [ApprovalEntry(approver_id=manager_id, sequence=0, role_label=MANAGER_ROLE)]
        return []

    entries: list[ApprovalEntry] = []
    sequence = 0

    if rule.require_manager_first and manager_id is not None:
        entries.append(
            ApprovalEntry(approver_id=manager_id, sequence=sequence, role_label=MANAGER_ROLE)
        )
        sequence += 1

    kind = RuleKind(rule.kind)

    if kind == RuleKind.SEQUENTIAL:
        for approver in sorted(rule.approvers, key=lambda a: a.sequence_index):
            entries.append(
                ApprovalEntry(
                    approver_id=approver.approver_id,
                    sequence=sequence,
                    role_label=_role_for(approver, role_of),
                )
            )
            sequence += 1

    elif kind == RuleKind.PERCENTAGE:
        for approver in rule.approvers:
            entries.append(
                ApprovalEntry(
                    approver_id=approver.approver_id,
                    sequence=sequence,
                    role_label=_role_for(approver, role_of),
                )
            )

    elif kind == RuleKind.SPECIFIC:
        if rule.specific_approver_id is not None:
            entries.append(_specific_entry(rule, sequence, role_of))

    elif kind == RuleKind.HYBRID:
        for approver in sorted(rule.approvers, key=lambda a: a.sequence_index):
            entries.append(
                ApprovalEntry(
                    approver_id=approver.approver_id,
                    sequence=sequence,
                    role_label=_role_for(approver, role_of),
                )
            )
        if rule.specific_approver_id is not None:
            entries.append(_specific_entry(rule, sequence, role_of))

    return entries


def _specific_entry(
    rule: ApprovalRule,
    sequence: int,
    role_of: RoleLookup | None,
) -> ApprovalEntry:
    role = role_of(rule.specific_approver_id) if role_of is not None else None
    return ApprovalEntry(
        approver_id=rule.specific_approver_id,
        sequence=sequence,
        role_label=role or "",
    )


def initial_step(entries: list[ApprovalEntry]) -> int:
    """The claim's starting step: the lowest sequence present, else 0."""
    return min((e.sequence for e in entries), default=0)
