"""
Pure domain layer.

This module contains value objects and the decision ledger with NO
dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

Time enters only through an injected ``Clock``.
"""

from expense_kernel.domain.approval import (
    APPROVAL_ELIGIBLE_ROLES,
    CLAIM_TRANSITIONS,
    EXPENSE_CATEGORIES,
    MANAGER_ROLE,
    PERCENTAGE_EXCLUDABLE_ROLES,
    TERMINAL_CLAIM_STATUSES,
    AmountThreshold,
    ApprovalAction,
    ApprovalEntry,
    ApprovalRule,
    Claim,
    ClaimStatus,
    ClaimSubmission,
    DecisionOutcome,
    OrganizationSettings,
    EntryStatus,
    RuleApprover,
    RuleKind,
)
from expense_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from expense_kernel.domain.directory import (
    DirectoryUser,
    InMemoryOrgDirectory,
    OrgDirectory,
)
from expense_kernel.domain.ledger import DecisionLedger

__all__ = [
    "APPROVAL_ELIGIBLE_ROLES",
    "CLAIM_TRANSITIONS",
    "EXPENSE_CATEGORIES",
    "MANAGER_ROLE",
    "PERCENTAGE_EXCLUDABLE_ROLES",
    "TERMINAL_CLAIM_STATUSES",
    "AmountThreshold",
    "ApprovalAction",
    "ApprovalEntry",
    "ApprovalRule",
    "Claim",
    "ClaimStatus",
    "ClaimSubmission",
    "Clock",
    "DecisionLedger",
    "DecisionOutcome",
    "DeterministicClock",
    "DirectoryUser",
    "EntryStatus",
    "InMemoryOrgDirectory",
    "OrgDirectory",
    "OrganizationSettings",
    "RuleApprover",
    "RuleKind",
    "SystemClock",
]
