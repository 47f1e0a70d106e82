"""
expense_kernel.services.claim_service -- Claim submission and decisions.

Responsibility:
    Submit claims (resolve rule, build the ledger, persist claim and ledger
    together) and record approver decisions through the pure
    ``ApprovalEngine``.  Also serves claim reads and the per-organization
    settings the workflow builder consults.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/ and engines.
    Flushes only; the caller owns commit/rollback.

Invariants enforced:
    - Atomic submission: a claim row is never flushed without its ledger.
    - Decisions run load -> lock -> apply -> evaluate -> persist on one
      claim row.  PostgreSQL takes ``SELECT ... FOR UPDATE``; every
      dialect gets the optimistic ``version`` compare-and-swap, and every
      decision dirties the claim row so the check always runs.
    - A rejected decision (guard failure) leaves the stored claim untouched.

Failure modes:
    - InvalidClaimError for a malformed submission.
    - ClaimNotFoundError for an unknown claim_id.
    - NotAnApproverError / OutOfTurnError / ClaimAlreadyFinalizedError /
      InvalidDecisionActionError from the engine.
    - ConcurrencyConflictError when the claim changed underneath the
      decision.  The session must be rolled back by the caller.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from expense_engines.approval import ApprovalEngine
from expense_engines.workflow_builder import build_workflow, initial_step
from expense_kernel.domain.approval import (
    EXPENSE_CATEGORIES,
    ApprovalAction,
    Claim,
    ClaimStatus,
    ClaimSubmission,
    DecisionOutcome,
    EntryStatus,
    OrganizationSettings,
)
from expense_kernel.domain.clock import Clock
from expense_kernel.domain.directory import OrgDirectory
from expense_kernel.domain.ledger import DecisionLedger
from expense_kernel.exceptions import (
    ClaimNotFoundError,
    ConcurrencyConflictError,
    InvalidClaimError,
)
from expense_kernel.logging_config import LogContext, get_logger
from expense_kernel.models.claim import ApprovalEntryModel, ClaimModel
from expense_kernel.models.organization import OrganizationSettingsModel
from expense_kernel.services.base import BaseService
from expense_kernel.services.rule_catalog import RuleCatalogService

logger = get_logger("services.claim_service")


class ClaimService(BaseService):
    """Persistence boundary around the approval engine."""

    def __init__(
        self,
        session: Session,
        catalog: RuleCatalogService,
        directory: OrgDirectory,
        clock: Clock | None = None,
        engine: ApprovalEngine | None = None,
    ) -> None:
        super().__init__(session, clock)
        self._catalog = catalog
        self._directory = directory
        self._engine = engine or ApprovalEngine()

    # ------------------------------------------------------------------
    # Organization settings
    # ------------------------------------------------------------------

    def get_organization_settings(self, org_id: UUID) -> OrganizationSettings:
        """Stored settings, or the defaults when the organization has none."""
        model = self._load_settings_model(org_id)
        if model is None:
            return OrganizationSettings(org_id=org_id)
        return model.to_dto()

    def set_organization_settings(
        self,
        org_id: UUID,
        *,
        base_currency: str = "USD",
        manager_is_approver: bool = True,
    ) -> OrganizationSettings:
        now = self._clock.now()
        model = self._load_settings_model(org_id)
        if model is None:
            model = OrganizationSettingsModel(org_id=org_id, created_at=now)
            self._session.add(model)
        model.base_currency = base_currency
        model.manager_is_approver = manager_is_approver
        model.updated_at = now
        self._session.flush()

        logger.info(
            "organization_settings_saved",
            extra={
                "org_id": str(org_id),
                "base_currency": base_currency,
                "manager_is_approver": manager_is_approver,
            },
        )
        return model.to_dto()

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit_claim(self, submission: ClaimSubmission) -> Claim:
        """Resolve the governing rule, build the ledger and store the claim.

        Raises:
            InvalidClaimError: malformed submission.
        """
        self._validate_submission(submission)

        with LogContext.bind(org_id=str(submission.org_id), actor_id=str(submission.employee_id)):
            settings = self.get_organization_settings(submission.org_id)
            rule = self._catalog.resolve(
                submission.org_id, submission.converted_amount, submission.category,
            )
            manager_id = self._directory.lookup_manager(submission.employee_id)

            entries = build_workflow(
                rule=rule,
                manager_id=manager_id,
                manager_is_approver=settings.manager_is_approver,
                role_of=self._directory.get_role,
            )

            now = self._clock.now()
            claim = Claim(
                claim_id=uuid4(),
                org_id=submission.org_id,
                employee_id=submission.employee_id,
                title=submission.title,
                amount=submission.amount,
                currency=submission.currency,
                converted_amount=submission.converted_amount,
                category=submission.category,
                ledger=DecisionLedger(entries),
                base_currency=submission.base_currency,
                exchange_rate=submission.exchange_rate,
                description=submission.description,
                merchant_name=submission.merchant_name,
                expense_date=submission.expense_date,
                current_step=initial_step(entries),
                rule=rule,
                submitted_at=now,
            )

            logger.info(
                "workflow_built",
                extra={
                    "claim_id": str(claim.claim_id),
                    "rule_id": str(rule.rule_id) if rule else None,
                    "manager_id": str(manager_id) if manager_id else None,
                    "entry_count": len(entries),
                    "steps": claim.ledger.sequences(),
                },
            )

            initial_status = self._engine.evaluate(claim)
            if initial_status != ClaimStatus.PENDING:
                claim.status = initial_status
                claim.finalized_at = now
                if claim.ledger.is_empty():
                    logger.warning(
                        "claim_auto_approved_empty_ledger",
                        extra={
                            "claim_id": str(claim.claim_id),
                            "rule_id": str(rule.rule_id) if rule else None,
                            "manager_is_approver": settings.manager_is_approver,
                        },
                    )

            model = ClaimModel.from_dto(claim)
            model.created_at = now
            model.updated_at = now
            self._session.add(model)
            self._session.flush()

            logger.info(
                "claim_submitted",
                extra={
                    "claim_id": str(claim.claim_id),
                    "employee_id": str(claim.employee_id),
                    "converted_amount": str(claim.converted_amount),
                    "base_currency": claim.base_currency,
                    "category": claim.category,
                    "status": claim.status.value,
                },
            )
            return model.to_dto()

    def _validate_submission(self, submission: ClaimSubmission) -> None:
        if not submission.title or not submission.title.strip():
            raise InvalidClaimError("title is required")
        if submission.category not in EXPENSE_CATEGORIES:
            raise InvalidClaimError(
                f"category {submission.category!r} is not one of {', '.join(EXPENSE_CATEGORIES)}"
            )
        if Decimal(submission.amount) <= 0:
            raise InvalidClaimError("amount must be positive")
        if Decimal(submission.converted_amount) <= 0:
            raise InvalidClaimError("converted_amount must be positive")
        if not submission.currency or len(submission.currency) != 3:
            raise InvalidClaimError(f"currency {submission.currency!r} is not an ISO 4217 code")
        if not self._directory.belongs_to(submission.employee_id, submission.org_id):
            raise InvalidClaimError(
                f"employee {submission.employee_id} does not belong to organization "
                f"{submission.org_id}"
            )

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def record_decision(
        self,
        claim_id: UUID,
        approver_id: UUID,
        action: ApprovalAction | str,
        comment: str = "",
    ) -> DecisionOutcome:
        """Lock the claim, apply one decision and persist the result."""
        model = self.load_claim_for_update(claim_id)
        return self.apply_decision_to(model, approver_id, action, comment)

    def load_claim_for_update(self, claim_id: UUID) -> ClaimModel:
        """Load the claim row, locking it where the dialect supports it.

        Raises:
            ClaimNotFoundError: unknown claim.
        """
        model = self._session.execute(
            select(ClaimModel)
            .where(ClaimModel.claim_id == claim_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if model is None:
            raise ClaimNotFoundError(str(claim_id))
        return model

    def apply_decision_to(
        self,
        model: ClaimModel,
        approver_id: UUID,
        action: ApprovalAction | str,
        comment: str = "",
    ) -> DecisionOutcome:
        """Apply a decision to an already loaded claim row and flush it.

        The flush is a compare-and-swap on the version the row was loaded
        at.

        Raises:
            ConcurrencyConflictError: the row changed since it was loaded.
        """
        claim = model.to_dto()
        now = self._clock.now()

        with LogContext.bind(
            claim_id=str(claim.claim_id),
            actor_id=str(approver_id),
            org_id=str(claim.org_id),
        ):
            outcome = self._engine.apply(claim, approver_id, action, comment, now)

            model.apply_dto(claim)
            model.updated_at = now
            flag_modified(model, "updated_at")
            try:
                self._session.flush()
            except StaleDataError as exc:
                logger.warning(
                    "decision_conflict",
                    extra={
                        "claim_id": str(claim.claim_id),
                        "approver_id": str(approver_id),
                        "loaded_version": claim.version,
                    },
                )
                raise ConcurrencyConflictError(str(claim.claim_id)) from exc

            logger.info(
                "decision_recorded",
                extra={
                    "claim_id": str(claim.claim_id),
                    "approver_id": str(approver_id),
                    "action": ApprovalAction(action).value,
                    "sequence": outcome.entry.sequence,
                    "status": outcome.new_status.value,
                    "version": model.version,
                },
            )
            if outcome.step_after != outcome.step_before:
                logger.info(
                    "step_advanced",
                    extra={
                        "claim_id": str(claim.claim_id),
                        "step_before": outcome.step_before,
                        "step_after": outcome.step_after,
                    },
                )
            if outcome.finalized:
                logger.info(
                    "claim_finalized",
                    extra={
                        "claim_id": str(claim.claim_id),
                        "status": outcome.new_status.value,
                        "finalized_at": claim.finalized_at,
                    },
                )
        return outcome

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_claim(self, claim_id: UUID) -> Claim:
        model = self._session.execute(
            select(ClaimModel).where(ClaimModel.claim_id == claim_id)
        ).scalar_one_or_none()
        if model is None:
            raise ClaimNotFoundError(str(claim_id))
        return model.to_dto()

    def pending_for_approver(
        self,
        approver_id: UUID,
        *,
        actionable_only: bool = False,
    ) -> list[Claim]:
        """Pending claims on which ``approver_id`` still holds a pending entry.

        With ``actionable_only`` the approver must be able to decide now:
        under a sequential rule the entry must sit on the claim's active
        step.  Newest first.
        """
        stmt = (
            select(ClaimModel)
            .join(ApprovalEntryModel, ApprovalEntryModel.claim_id == ClaimModel.claim_id)
            .where(
                ClaimModel.status == ClaimStatus.PENDING.value,
                ApprovalEntryModel.approver_id == approver_id,
                ApprovalEntryModel.status == EntryStatus.PENDING.value,
            )
        )
        stmt = stmt.distinct().order_by(ClaimModel.submitted_at.desc(), ClaimModel.claim_id)
        pending = [m.to_dto() for m in self._session.execute(stmt).scalars().all()]
        if actionable_only:
            # rule kind lives in the snapshot, so the turn check runs in Python
            pending = [c for c in pending if self._engine.is_actionable(c, approver_id)]
        return pending

    def list_claims(
        self,
        org_id: UUID,
        *,
        status: ClaimStatus | str | None = None,
        category: str | None = None,
        employee_id: UUID | None = None,
    ) -> list[Claim]:
        """Claims of an organization, newest first, optionally filtered."""
        stmt = select(ClaimModel).where(ClaimModel.org_id == org_id)
        if status is not None:
            stmt = stmt.where(ClaimModel.status == ClaimStatus(status).value)
        if category is not None:
            stmt = stmt.where(ClaimModel.category == category)
        if employee_id is not None:
            stmt = stmt.where(ClaimModel.employee_id == employee_id)
        stmt = stmt.order_by(ClaimModel.submitted_at.desc(), ClaimModel.claim_id)
        return [m.to_dto() for m in self._session.execute(stmt).scalars().all()]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load_settings_model(self, org_id: UUID) -> OrganizationSettingsModel | None:
        return self._session.execute(
            select(OrganizationSettingsModel).where(
                OrganizationSettingsModel.org_id == org_id,
            )
        ).scalar_one_or_none()
