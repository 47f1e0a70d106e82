"""SQLAlchemy ORM models."""

from expense_kernel.models.approval_rule import (
    ApprovalRuleModel,
    RuleApproverModel,
    rule_from_snapshot,
    rule_to_snapshot,
)
from expense_kernel.models.claim import ApprovalEntryModel, ClaimModel
from expense_kernel.models.organization import OrganizationSettingsModel

__all__ = [
    "ApprovalEntryModel",
    "ApprovalRuleModel",
    "ClaimModel",
    "OrganizationSettingsModel",
    "RuleApproverModel",
    "rule_from_snapshot",
    "rule_to_snapshot",
]
