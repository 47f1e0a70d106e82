"""
expense_engines.approval -- Approval state machine for expense claims.

Responsibility:
    Apply one approver's decision to a claim's ledger under the claim's rule
    snapshot, advance the active step, and recompute the claim status.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The caller supplies the
    decision time; locking and persistence belong to ClaimService.

Invariants enforced:
    - Claim lifecycle: pending -> approved | rejected, both terminal
      (``CLAIM_TRANSITIONS``).  ``finalized_at`` is stamped exactly once.
    - Reject veto: any rejected entry rejects the claim, whatever step it
      sits on.
    - Step guard (sequential rules only): an entry may only be decided while
      its sequence is the claim's ``current_step``.  Percentage, specific
      and hybrid rules accept decisions from any pending approver at any
      time, including ahead of a manager-first entry.
    - ``current_step`` never decreases.

Evaluation precedence (``evaluate``):
    1. any rejected entry              -> rejected
    2. no rule                         -> approved iff every entry approved
    3. sequential                      -> approved iff every group approved
    4. percentage                      -> approved iff approved * 100 >= P * eligible
    5. specific                        -> approved iff the designated entry approved
    6. hybrid                          -> specific short-circuit, else 4 on the voting group

Failure modes:
    - ClaimAlreadyFinalizedError: claim is approved or rejected.
    - NotAnApproverError: no pending entry for the approver.
    - OutOfTurnError: sequential rule and the entry belongs to a later step.
    - InvalidDecisionActionError: action is not approve/reject.
    All are raised before the ledger is touched.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from expense_kernel.domain.approval import (
    CLAIM_TRANSITIONS,
    ApprovalAction,
    ApprovalEntry,
    ApprovalRule,
    Claim,
    ClaimStatus,
    DecisionOutcome,
    EntryStatus,
    RuleKind,
)
from expense_kernel.domain.ledger import DecisionLedger
from expense_kernel.exceptions import (
    ClaimAlreadyFinalizedError,
    InvalidDecisionActionError,
    NotAnApproverError,
    OutOfTurnError,
)
from expense_kernel.logging_config import get_logger

logger = get_logger("engines.approval")


# =========================================================================
# Percentage helpers
# =========================================================================


def eligible_entries(
    entries: Iterable[ApprovalEntry],
    excluded_roles: frozenset[str],
) -> list[ApprovalEntry]:
    """Entries that count toward a percentage threshold."""
    return [e for e in entries if e.role_label not in excluded_roles]


def approval_percentage(
    entries: Iterable[ApprovalEntry],
    excluded_roles: frozenset[str] = frozenset(),
) -> Decimal | None:
    """Share of eligible entries approved, as a percentage (None if no eligible entries)."""
    eligible = eligible_entries(entries, excluded_roles)
    if not eligible:
        return None
    approved = sum(1 for e in eligible if e.status == EntryStatus.APPROVED)
    return Decimal(approved) * 100 / Decimal(len(eligible))


def percentage_met(
    entries: Iterable[ApprovalEntry],
    percentage_required: int | None,
    excluded_roles: frozenset[str] = frozenset(),
) -> bool:
    """``approved / eligible * 100 >= required``, compared in integers.

    An empty eligible set never meets the threshold.
    """
    if percentage_required is None:
        return False
    eligible = eligible_entries(entries, excluded_roles)
    if not eligible:
        return False
    approved = sum(1 for e in eligible if e.status == EntryStatus.APPROVED)
    return approved * 100 >= percentage_required * len(eligible)


def _specific_approved(ledger: DecisionLedger, specific_approver_id: UUID | None) -> bool:
    if specific_approver_id is None:
        return False
    return any(
        e.status == EntryStatus.APPROVED for e in ledger.entries_for(specific_approver_id)
    )


def _voting_group(ledger: DecisionLedger) -> tuple[ApprovalEntry, ...]:
    """The parallel group of a non-sequential rule: the last sequence group."""
    seqs = ledger.sequences()
    return ledger.group(seqs[-1]) if seqs else ()


# =========================================================================
# Evaluation
# =========================================================================


def evaluate(ledger: DecisionLedger, rule: ApprovalRule | None) -> ClaimStatus:
    """Compute the claim status implied by ``ledger`` under ``rule``."""
    if ledger.any_rejected():
        return ClaimStatus.REJECTED

    if rule is None:
        return ClaimStatus.APPROVED if ledger.all_approved() else ClaimStatus.PENDING

    kind = RuleKind(rule.kind)

    if kind == RuleKind.SEQUENTIAL:
        return ClaimStatus.APPROVED if ledger.all_approved() else ClaimStatus.PENDING

    if kind == RuleKind.PERCENTAGE:
        met = percentage_met(ledger.entries, rule.percentage_required, rule.excluded_roles)
        return ClaimStatus.APPROVED if met else ClaimStatus.PENDING

    if kind == RuleKind.SPECIFIC:
        if _specific_approved(ledger, rule.specific_approver_id):
            return ClaimStatus.APPROVED
        return ClaimStatus.PENDING

    if kind == RuleKind.HYBRID:
        if _specific_approved(ledger, rule.specific_approver_id):
            return ClaimStatus.APPROVED
        if percentage_met(_voting_group(ledger), rule.percentage_required, rule.excluded_roles):
            return ClaimStatus.APPROVED
        return ClaimStatus.PENDING

    return ClaimStatus.PENDING


# =========================================================================
# Engine
# =========================================================================


class ApprovalEngine:
    """Applies decisions to claims and drives their status.

    Contract:
        ``apply`` mutates the given ``Claim`` in place and returns a
        ``DecisionOutcome``.  On any failure the claim is left exactly as
        it was passed in.

    Non-goals:
        - Does NOT lock or persist (see ``ClaimService``).
        - Does NOT read the rule catalog; claims carry their rule snapshot.
    """

    def evaluate(self, claim: Claim) -> ClaimStatus:
        return evaluate(claim.ledger, claim.rule)

    @staticmethod
    def is_turn_ordered(claim: Claim) -> bool:
        """Whether decisions on ``claim`` must follow ``current_step``."""
        return claim.rule is not None and RuleKind(claim.rule.kind) == RuleKind.SEQUENTIAL

    def is_actionable(self, claim: Claim, approver_id: UUID) -> bool:
        """True when ``approver_id`` could decide ``claim`` right now."""
        if claim.is_final:
            return False
        entry = claim.ledger.pending_entry_for(approver_id)
        if entry is None:
            return False
        return not self.is_turn_ordered(claim) or entry.sequence == claim.current_step

    def check_decision(self, claim: Claim, approver_id: UUID) -> ApprovalEntry:
        """Run every guard for ``approver_id`` without mutating the claim.

        Returns:
            The pending entry the decision would land on.
        """
        if claim.is_final:
            raise ClaimAlreadyFinalizedError(str(claim.claim_id), claim.status.value)

        entry = claim.ledger.pending_entry_for(approver_id)
        if entry is None:
            raise NotAnApproverError(str(claim.claim_id), str(approver_id))

        if self.is_turn_ordered(claim) and entry.sequence != claim.current_step:
            raise OutOfTurnError(
                str(claim.claim_id),
                str(approver_id),
                current_step=claim.current_step,
                entry_step=entry.sequence,
            )
        return entry

    def apply(
        self,
        claim: Claim,
        approver_id: UUID,
        action: ApprovalAction | str,
        comment: str,
        decided_at: datetime,
    ) -> DecisionOutcome:
        """Record a decision and re-evaluate the claim.

        Raises:
            InvalidDecisionActionError, ClaimAlreadyFinalizedError,
            NotAnApproverError, OutOfTurnError.
        """
        try:
            action = ApprovalAction(action)
        except ValueError:
            raise InvalidDecisionActionError(str(action)) from None

        self.check_decision(claim, approver_id)

        previous_status = claim.status
        step_before = claim.current_step

        entry = claim.ledger.apply_decision(
            approver_id, action, comment, decided_at, claim_id=claim.claim_id,
        )

        new_status = self.evaluate(claim)

        if new_status == ClaimStatus.PENDING:
            self._advance_step(claim)
        else:
            self._finalize(claim, new_status, decided_at)

        outcome = DecisionOutcome(
            claim_id=claim.claim_id,
            entry=entry,
            previous_status=previous_status,
            new_status=claim.status,
            step_before=step_before,
            step_after=claim.current_step,
        )

        logger.debug(
            "decision_applied",
            extra={
                "claim_id": str(claim.claim_id),
                "approver_id": str(approver_id),
                "action": action.value,
                "new_status": claim.status.value,
                "step_before": step_before,
                "step_after": claim.current_step,
            },
        )
        return outcome

    def _advance_step(self, claim: Claim) -> None:
        """Move past every fully approved group; never moves backwards."""
        ledger = claim.ledger
        while ledger.group(claim.current_step) and ledger.group_approved(claim.current_step):
            next_step = ledger.next_sequence_after(claim.current_step)
            if next_step is None:
                break
            claim.current_step = next_step

    def _finalize(self, claim: Claim, new_status: ClaimStatus, when: datetime) -> None:
        allowed = CLAIM_TRANSITIONS.get(claim.status, frozenset())
        if new_status not in allowed:
            raise ClaimAlreadyFinalizedError(str(claim.claim_id), claim.status.value)
        claim.status = new_status
        if claim.finalized_at is None:
            claim.finalized_at = when
