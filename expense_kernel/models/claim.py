"""
Module: expense_kernel.models.claim
Responsibility: ORM persistence for expense claims and their approval
    ledgers.

Architecture position: Kernel > Models.  May import from db/base.py and
    sibling model modules only.

Invariants enforced:
    - Optimistic locking: ``version`` is the mapper's version_id_col.  Every
      UPDATE of a claim row carries ``WHERE version = <loaded>``; a
      concurrent writer that got there first turns the flush into
      StaleDataError, never a silent lost update.
    - status is pending, approved or rejected (DB check constraint).
    - Ledger rows are written once at submission; afterwards only status,
      comment and decided_at change.  ``position`` preserves creation order.
    - The rule the claim was built against is frozen in ``rule_snapshot``.

Failure modes:
    - StaleDataError on flush when another transaction updated the claim
      since it was loaded (mapped to ConcurrencyConflictError by
      ClaimService).
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from expense_kernel.db.base import Base, TrackedBase, UUIDString
from expense_kernel.models.approval_rule import rule_from_snapshot, rule_to_snapshot

if TYPE_CHECKING:
    from expense_kernel.domain.approval import ApprovalEntry, Claim


class ClaimModel(TrackedBase):
    """Persistent expense claim.

    Contract:
        Status transitions are enforced by ApprovalEngine; the row only
        records the result.  Callers must bump ``updated_at`` on every
        decision so the versioned UPDATE is always issued.
    """

    __tablename__ = "expense_claims"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_expense_claims_valid_status",
        ),
        Index("ix_expense_claims_org_status", "org_id", "status", "submitted_at"),
        Index("ix_expense_claims_employee", "employee_id", "submitted_at"),
    )

    claim_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, unique=True)
    org_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    employee_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    merchant_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    expense_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    converted_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    base_currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    exchange_rate: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), nullable=False, default=Decimal("1"),
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    current_step: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rule_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    rule_snapshot: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    finalized_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    entries: Mapped[list["ApprovalEntryModel"]] = relationship(
        "ApprovalEntryModel",
        back_populates="claim",
        primaryjoin="ClaimModel.claim_id == ApprovalEntryModel.claim_id",
        order_by="ApprovalEntryModel.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<Claim {self.claim_id} {self.converted_amount} {self.base_currency} "
            f"status={self.status} step={self.current_step} v{self.version}>"
        )

    def to_dto(self) -> Claim:
        """Convert ORM model to the mutable domain aggregate."""
        from expense_kernel.domain.approval import Claim as ClaimDTO, ClaimStatus
        from expense_kernel.domain.ledger import DecisionLedger

        return ClaimDTO(
            claim_id=self.claim_id,
            org_id=self.org_id,
            employee_id=self.employee_id,
            title=self.title,
            amount=Decimal(self.amount),
            currency=self.currency,
            converted_amount=Decimal(self.converted_amount),
            category=self.category,
            ledger=DecisionLedger(e.to_dto() for e in self.entries),
            base_currency=self.base_currency,
            exchange_rate=Decimal(self.exchange_rate),
            description=self.description or "",
            merchant_name=self.merchant_name or "",
            expense_date=self.expense_date,
            status=ClaimStatus(self.status),
            current_step=self.current_step,
            rule=rule_from_snapshot(self.rule_snapshot) if self.rule_snapshot else None,
            submitted_at=self.submitted_at,
            finalized_at=self.finalized_at,
            version=self.version,
        )

    @classmethod
    def from_dto(cls, dto: Claim) -> ClaimModel:
        """Create ORM model (with its ledger rows) from a freshly built claim."""
        model = cls(
            claim_id=dto.claim_id,
            org_id=dto.org_id,
            employee_id=dto.employee_id,
            title=dto.title,
            description=dto.description,
            merchant_name=dto.merchant_name,
            category=dto.category,
            expense_date=dto.expense_date,
            amount=dto.amount,
            currency=dto.currency,
            converted_amount=dto.converted_amount,
            base_currency=dto.base_currency,
            exchange_rate=dto.exchange_rate,
            status=dto.status.value,
            current_step=dto.current_step,
            rule_id=dto.applied_rule_id,
            rule_snapshot=rule_to_snapshot(dto.rule) if dto.rule is not None else None,
            submitted_at=dto.submitted_at,
            finalized_at=dto.finalized_at,
        )
        model.entries = [
            ApprovalEntryModel.from_dto(entry, position=idx)
            for idx, entry in enumerate(dto.ledger)
        ]
        return model

    def apply_dto(self, dto: Claim) -> None:
        """Copy the decision-driven state of ``dto`` back onto this row.

        Only status, current_step, finalized_at and ledger decisions ever
        change after submission.
        """
        self.status = dto.status.value
        self.current_step = dto.current_step
        self.finalized_at = dto.finalized_at
        for row, entry in zip(self.entries, dto.ledger):
            if row.status != entry.status.value:
                row.status = entry.status.value
                row.comment = entry.comment
                row.decided_at = entry.decided_at


class ApprovalEntryModel(Base):
    """One approver slot on a claim's ledger."""

    __tablename__ = "claim_approval_entries"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_claim_approval_entries_valid_status",
        ),
        UniqueConstraint("claim_id", "position", name="uq_claim_entry_position"),
        # Covering index for pending_for_approver()
        Index("ix_claim_approval_entries_approver", "approver_id", "status"),
    )

    claim_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("expense_claims.claim_id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    approver_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    role_label: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    comment: Mapped[str] = mapped_column(Text, nullable=False, default="")
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    claim: Mapped[ClaimModel] = relationship(
        "ClaimModel",
        back_populates="entries",
        primaryjoin="ApprovalEntryModel.claim_id == ClaimModel.claim_id",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalEntry {self.approver_id} seq={self.sequence} status={self.status}>"
        )

    def to_dto(self) -> ApprovalEntry:
        from expense_kernel.domain.approval import (
            ApprovalEntry as ApprovalEntryDTO,
            EntryStatus,
        )

        return ApprovalEntryDTO(
            approver_id=self.approver_id,
            sequence=self.sequence,
            role_label=self.role_label or "",
            status=EntryStatus(self.status),
            comment=self.comment or "",
            decided_at=self.decided_at,
        )

    @classmethod
    def from_dto(cls, dto: ApprovalEntry, position: int) -> ApprovalEntryModel:
        return cls(
            position=position,
            approver_id=dto.approver_id,
            sequence=dto.sequence,
            role_label=dto.role_label,
            status=dto.status.value,
            comment=dto.comment,
            decided_at=dto.decided_at,
        )
