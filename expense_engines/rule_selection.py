"""
expense_engines.rule_selection -- Pick the approval rule that governs a claim.

Responsibility:
    Given an organization's rules, a base-currency amount and a category,
    return the single applicable rule or ``None``.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Only active rules of the claim's organization are candidates.
    - A rule with no categories applies to every category.
    - Amount windows are inclusive at both ends; no maximum is +infinity.
    - Deterministic: among matches the highest minimum wins, then the most
      recently created rule, then the greatest rule_id.

Failure modes:
    - Returns ``None`` when nothing matches.  That is the fallback signal
      for the manager-only policy, not an error.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from expense_engines.tracer import traced_engine
from expense_kernel.domain.approval import ApprovalRule

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def rule_matches(
    rule: ApprovalRule,
    org_id: UUID,
    amount: Decimal,
    category: str,
) -> bool:
    """Check whether ``rule`` is a candidate for this claim."""
    if not rule.active or rule.org_id != org_id:
        return False
    if not rule.applies_to_category(category):
        return False
    return rule.threshold.contains(amount)


def _specificity_key(rule: ApprovalRule) -> tuple:
    created = rule.created_at or _EPOCH
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return (rule.threshold.min_amount, created, str(rule.rule_id))


@traced_engine("rule_selection", "1.0", fingerprint_fields=("org_id", "amount", "category"))
def select_applicable_rule(
    rules: Iterable[ApprovalRule],
    *,
    org_id: UUID,
    amount: Decimal,
    category: str,
) -> ApprovalRule | None:
    """Select the rule governing a claim of ``amount`` in ``category``.

    Args:
        rules: Candidate rules (any organization, any state).
        org_id: The claim's organization.
        amount: Claim amount in the organization's base currency.
        category: Expense category.

    Returns:
        The matching rule with the highest threshold minimum, or None.
    """
    matches = [r for r in rules if rule_matches(r, org_id, amount, category)]
    if not matches:
        return None
    return max(matches, key=_specificity_key)
