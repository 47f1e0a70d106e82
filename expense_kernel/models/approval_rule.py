"""
Module: expense_kernel.models.approval_rule
Responsibility: ORM persistence for approval rules and their ordered
    approver lists, plus the JSON snapshot codec claims use to pin the
    rule they were built against.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - kind is one of the closed rule kinds (DB check constraint).
    - percentage_required, when present, lies in 1..100.
    - Approver rows are owned by their rule: replacing the list on update
      deletes the orphans.
    - version increases by one on every catalog update.

Failure modes:
    - IntegrityError on duplicate rule_id.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from expense_kernel.db.base import Base, TrackedBase, UUIDString

if TYPE_CHECKING:
    from expense_kernel.domain.approval import ApprovalRule


class ApprovalRuleModel(TrackedBase):
    """Persistent approval rule.

    Categories and excluded roles are small unordered sets and live in
    JSON columns; approvers are ordered and live in child rows.
    """

    __tablename__ = "approval_rules"

    __table_args__ = (
        CheckConstraint(
            "kind IN ('sequential', 'percentage', 'specific', 'hybrid')",
            name="ck_approval_rules_valid_kind",
        ),
        CheckConstraint(
            "percentage_required IS NULL OR "
            "(percentage_required >= 1 AND percentage_required <= 100)",
            name="ck_approval_rules_percentage_range",
        ),
        Index("ix_approval_rules_org_active", "org_id", "active"),
    )

    rule_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, unique=True)
    org_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    percentage_required: Mapped[int | None] = mapped_column(Integer, nullable=True)
    excluded_roles: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    specific_approver_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    require_manager_first: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    min_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=Decimal("0"))
    max_amount: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)
    categories: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    approvers: Mapped[list["RuleApproverModel"]] = relationship(
        "RuleApproverModel",
        back_populates="rule",
        primaryjoin="ApprovalRuleModel.rule_id == RuleApproverModel.rule_id",
        order_by="RuleApproverModel.sequence_index",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<ApprovalRule {self.rule_id} {self.name!r} kind={self.kind} v{self.version}>"

    def to_dto(self) -> ApprovalRule:
        """Convert ORM model to frozen domain DTO."""
        from expense_kernel.domain.approval import (
            AmountThreshold,
            ApprovalRule as ApprovalRuleDTO,
            RuleApprover,
            RuleKind,
        )

        return ApprovalRuleDTO(
            rule_id=self.rule_id,
            org_id=self.org_id,
            name=self.name,
            kind=RuleKind(self.kind),
            description=self.description or "",
            approvers=tuple(
                RuleApprover(
                    approver_id=a.approver_id,
                    sequence_index=a.sequence_index,
                    role_label=a.role_label or "",
                )
                for a in self.approvers
            ),
            percentage_required=self.percentage_required,
            excluded_roles=frozenset(self.excluded_roles or ()),
            specific_approver_id=self.specific_approver_id,
            require_manager_first=self.require_manager_first,
            threshold=AmountThreshold(
                min_amount=Decimal(self.min_amount),
                max_amount=Decimal(self.max_amount) if self.max_amount is not None else None,
            ),
            categories=frozenset(self.categories or ()),
            active=self.active,
            version=self.version,
            created_at=self.created_at,
        )

    @classmethod
    def from_dto(cls, dto: ApprovalRule) -> ApprovalRuleModel:
        """Create ORM model from domain DTO."""
        model = cls(rule_id=dto.rule_id, org_id=dto.org_id, version=dto.version)
        model.apply_dto(dto)
        if dto.created_at is not None:
            model.created_at = dto.created_at
        return model

    def apply_dto(self, dto: ApprovalRule) -> None:
        """Overwrite the editable fields from ``dto``.

        rule_id, org_id, version and timestamps are left to the caller.
        """
        self.name = dto.name
        self.description = dto.description
        self.kind = dto.kind.value
        self.percentage_required = dto.percentage_required
        self.excluded_roles = sorted(dto.excluded_roles)
        self.specific_approver_id = dto.specific_approver_id
        self.require_manager_first = dto.require_manager_first
        self.min_amount = dto.threshold.min_amount
        self.max_amount = dto.threshold.max_amount
        self.categories = sorted(dto.categories)
        self.active = dto.active
        self.approvers = [
            RuleApproverModel(
                approver_id=a.approver_id,
                sequence_index=a.sequence_index,
                role_label=a.role_label,
            )
            for a in dto.approvers
        ]


class RuleApproverModel(Base):
    """One approver slot of a rule, ordered by ``sequence_index``."""

    __tablename__ = "approval_rule_approvers"

    __table_args__ = (
        Index("ix_rule_approvers_rule", "rule_id", "sequence_index"),
    )

    rule_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_rules.rule_id", ondelete="CASCADE"),
        nullable=False,
    )
    approver_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    sequence_index: Mapped[int] = mapped_column(Integer, nullable=False)
    role_label: Mapped[str] = mapped_column(String(50), nullable=False, default="")

    rule: Mapped[ApprovalRuleModel] = relationship(
        "ApprovalRuleModel",
        back_populates="approvers",
        primaryjoin="RuleApproverModel.rule_id == ApprovalRuleModel.rule_id",
    )

    def __repr__(self) -> str:
        return f"<RuleApprover {self.approver_id} #{self.sequence_index}>"


# =========================================================================
# Rule snapshot codec
# =========================================================================


def rule_to_snapshot(rule: ApprovalRule) -> dict[str, Any]:
    """Serialize a rule into a JSON-safe dict (Decimals and UUIDs as strings)."""
    return {
        "rule_id": str(rule.rule_id),
        "org_id": str(rule.org_id),
        "name": rule.name,
        "kind": rule.kind.value,
        "description": rule.description,
        "approvers": [
            {
                "approver_id": str(a.approver_id),
                "sequence_index": a.sequence_index,
                "role_label": a.role_label,
            }
            for a in rule.approvers
        ],
        "percentage_required": rule.percentage_required,
        "excluded_roles": sorted(rule.excluded_roles),
        "specific_approver_id": (
            str(rule.specific_approver_id) if rule.specific_approver_id else None
        ),
        "require_manager_first": rule.require_manager_first,
        "min_amount": str(rule.threshold.min_amount),
        "max_amount": (
            str(rule.threshold.max_amount) if rule.threshold.max_amount is not None else None
        ),
        "categories": sorted(rule.categories),
        "active": rule.active,
        "version": rule.version,
        "created_at": rule.created_at.isoformat() if rule.created_at else None,
    }


def rule_from_snapshot(data: dict[str, Any]) -> ApprovalRule:
    """Inverse of :func:`rule_to_snapshot`."""
    from expense_kernel.domain.approval import (
        AmountThreshold,
        ApprovalRule as ApprovalRuleDTO,
        RuleApprover,
        RuleKind,
    )

    specific = data.get("specific_approver_id")
    max_amount = data.get("max_amount")
    created_at = data.get("created_at")
    return ApprovalRuleDTO(
        rule_id=UUID(data["rule_id"]),
        org_id=UUID(data["org_id"]),
        name=data["name"],
        kind=RuleKind(data["kind"]),
        description=data.get("description", ""),
        approvers=tuple(
            RuleApprover(
                approver_id=UUID(a["approver_id"]),
                sequence_index=int(a["sequence_index"]),
                role_label=a.get("role_label", ""),
            )
            for a in data.get("approvers", ())
        ),
        percentage_required=data.get("percentage_required"),
        excluded_roles=frozenset(data.get("excluded_roles", ())),
        specific_approver_id=UUID(specific) if specific else None,
        require_manager_first=bool(data.get("require_manager_first", False)),
        threshold=AmountThreshold(
            min_amount=Decimal(data.get("min_amount", "0")),
            max_amount=Decimal(max_amount) if max_amount is not None else None,
        ),
        categories=frozenset(data.get("categories", ())),
        active=bool(data.get("active", True)),
        version=int(data.get("version", 1)),
        created_at=datetime.fromisoformat(created_at) if created_at else None,
    )
