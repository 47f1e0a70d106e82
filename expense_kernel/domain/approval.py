"""
Approval domain types (``expense_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the expense approval workflow.  Defines the rule
kinds, the claim lifecycle state machine, approval rules, ledger entries,
the claim aggregate, and decision outcomes.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/``, or outer layers.

Invariants enforced
-------------------
* Claim lifecycle -- ``CLAIM_TRANSITIONS`` defines the only valid claim
  status transitions.  Approved and rejected are terminal.
* Closed rule kinds -- ``RuleKind`` is a closed enum; per-kind required
  fields are checked in one place (``expense_engines.rule_validation``),
  never through subclassing.
* Rule snapshot -- a claim carries the ``ApprovalRule`` it was built
  against; later edits to the catalog never reach it.
* Entry shape -- ``ApprovalEntry`` values are frozen; only the ledger
  swaps in a decided copy, so approver, role and sequence never change.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

if TYPE_CHECKING:
    from expense_kernel.domain.ledger import DecisionLedger


# =========================================================================
# Enumerations
# =========================================================================


class RuleKind(str, Enum):
    """How a rule turns approver decisions into a claim outcome."""

    SEQUENTIAL = "sequential"
    PERCENTAGE = "percentage"
    SPECIFIC = "specific"
    HYBRID = "hybrid"


class ApprovalAction(str, Enum):
    """Actions an approver can take on a claim."""

    APPROVE = "approve"
    REJECT = "reject"


class EntryStatus(str, Enum):
    """Status of a single approver's slot in the ledger."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ClaimStatus(str, Enum):
    """Claim-level approval status (distinct from entry status)."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


CLAIM_TRANSITIONS: dict[ClaimStatus, frozenset[ClaimStatus]] = {
    ClaimStatus.PENDING: frozenset({
        ClaimStatus.APPROVED,
        ClaimStatus.REJECTED,
    }),
    ClaimStatus.APPROVED: frozenset(),
    ClaimStatus.REJECTED: frozenset(),
}

TERMINAL_CLAIM_STATUSES: frozenset[ClaimStatus] = frozenset({
    ClaimStatus.APPROVED,
    ClaimStatus.REJECTED,
})


# Roles that may hold an approval slot on a rule.
APPROVAL_ELIGIBLE_ROLES: frozenset[str] = frozenset({
    "manager", "admin", "ceo", "cfo", "cto", "director",
})

# Roles a rule may exclude from the percentage denominator.
PERCENTAGE_EXCLUDABLE_ROLES: frozenset[str] = frozenset({
    "ceo", "cfo", "cto", "director", "manager",
})

MANAGER_ROLE = "manager"

EXPENSE_CATEGORIES: tuple[str, ...] = (
    "Travel",
    "Food",
    "Office Supplies",
    "Equipment",
    "Utilities",
    "Marketing",
    "Training",
    "Entertainment",
    "Other",
)


# =========================================================================
# Rule Types
# =========================================================================


@dataclass(frozen=True)
class AmountThreshold:
    """Inclusive amount window; ``max_amount=None`` means unbounded."""

    min_amount: Decimal = Decimal("0")
    max_amount: Decimal | None = None

    def contains(self, amount: Decimal) -> bool:
        if amount < self.min_amount:
            return False
        return self.max_amount is None or amount <= self.max_amount


@dataclass(frozen=True)
class RuleApprover:
    """One approver slot in a rule's ordered approver list."""

    approver_id: UUID
    sequence_index: int
    role_label: str = ""


@dataclass(frozen=True)
class ApprovalRule:
    """A versioned approval policy for an organization.

    ``approvers`` drives sequential rules and is the voting pool for
    percentage and hybrid rules.  ``specific_approver_id`` approval is an
    unconditional short-circuit for specific and hybrid rules.
    """

    rule_id: UUID
    org_id: UUID
    name: str
    kind: RuleKind
    description: str = ""
    approvers: tuple[RuleApprover, ...] = ()
    percentage_required: int | None = None
    excluded_roles: frozenset[str] = frozenset()
    specific_approver_id: UUID | None = None
    require_manager_first: bool = False
    threshold: AmountThreshold = field(default_factory=AmountThreshold)
    categories: frozenset[str] = frozenset()
    active: bool = True
    version: int = 1
    created_at: datetime | None = None

    def applies_to_category(self, category: str) -> bool:
        return not self.categories or category in self.categories


# =========================================================================
# Ledger and Claim
# =========================================================================


@dataclass(frozen=True)
class ApprovalEntry:
    """One approver's slot and decision within a claim's ledger."""

    approver_id: UUID
    sequence: int
    role_label: str = ""
    status: EntryStatus = EntryStatus.PENDING
    comment: str = ""
    decided_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == EntryStatus.PENDING


@dataclass(frozen=True)
class OrganizationSettings:
    """Per-organization switches read at claim submission."""

    org_id: UUID
    base_currency: str = "USD"
    manager_is_approver: bool = True


@dataclass(frozen=True)
class ClaimSubmission:
    """Input for submitting a new expense claim.

    ``converted_amount`` is already in the organization's base currency;
    the engine performs no conversion.
    """

    org_id: UUID
    employee_id: UUID
    title: str
    amount: Decimal
    currency: str
    converted_amount: Decimal
    category: str
    base_currency: str = "USD"
    exchange_rate: Decimal = Decimal("1")
    description: str = ""
    merchant_name: str = ""
    expense_date: date | None = None


@dataclass
class Claim:
    """Expense claim aggregate.

    The claim exclusively owns its ``ledger``; ``ApprovalEngine`` is the
    only code that mutates ``status``, ``current_step``, ``finalized_at``
    or the ledger.
    """

    claim_id: UUID
    org_id: UUID
    employee_id: UUID
    title: str
    amount: Decimal
    currency: str
    converted_amount: Decimal
    category: str
    ledger: DecisionLedger
    base_currency: str = "USD"
    exchange_rate: Decimal = Decimal("1")
    description: str = ""
    merchant_name: str = ""
    expense_date: date | None = None
    status: ClaimStatus = ClaimStatus.PENDING
    current_step: int = 0
    rule: ApprovalRule | None = None
    submitted_at: datetime | None = None
    finalized_at: datetime | None = None
    version: int = 1

    @property
    def applied_rule_id(self) -> UUID | None:
        return self.rule.rule_id if self.rule is not None else None

    @property
    def is_final(self) -> bool:
        return self.status in TERMINAL_CLAIM_STATUSES


# =========================================================================
# Decision Outcome
# =========================================================================


@dataclass(frozen=True)
class DecisionOutcome:
    """Result of applying one approver decision to a claim."""

    claim_id: UUID
    entry: ApprovalEntry
    previous_status: ClaimStatus
    new_status: ClaimStatus
    step_before: int
    step_after: int

    @property
    def finalized(self) -> bool:
        return self.new_status in TERMINAL_CLAIM_STATUSES

    @property
    def message(self) -> str:
        if self.new_status == ClaimStatus.APPROVED:
            return "Claim approved"
        if self.new_status == ClaimStatus.REJECTED:
            return "Claim rejected"
        return "Decision recorded"
