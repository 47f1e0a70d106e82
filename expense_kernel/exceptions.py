"""
Typed Exception Hierarchy for the Expense Approval Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the approval engine (a web handler, a CLI, a queue worker) must
tell "retry this" apart from "tell the user no" without parsing messages.
Every error therefore has:
  1. a TYPED exception class (catch by type, not message)
  2. a CODE attribute (machine-readable, API-safe)
  3. structured DATA attributes (not just a message string)

Example - RIGHT way:
    try:
        claims.record_decision(claim_id, approver_id, ApprovalAction.APPROVE)
    except OutOfTurnError as e:
        api_response(code=e.code, active_step=e.current_step)
    except ConcurrencyConflictError:
        retry()

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ExpenseKernelError (base)
    |
    +-- RuleError
    |   +-- RuleValidationError
    |   +-- RuleNotFoundError
    |
    +-- ClaimError
    |   +-- ClaimNotFoundError
    |   +-- InvalidClaimError
    |
    +-- DecisionError
    |   +-- NotAnApproverError
    |   +-- OutOfTurnError
    |   +-- ClaimAlreadyFinalizedError
    |   +-- InvalidDecisionActionError
    |
    +-- ConcurrencyError
        +-- ConcurrencyConflictError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                     | When Raised
-------------|--------------------------|------------------------------------------
Rule         | VALIDATION_ERROR         | Rule is missing a field its kind requires
             | RULE_NOT_FOUND           | Rule ID doesn't exist
-------------|--------------------------|------------------------------------------
Claim        | CLAIM_NOT_FOUND          | Claim ID doesn't exist
             | INVALID_CLAIM            | Submission payload is malformed
-------------|--------------------------|------------------------------------------
Decision     | NOT_AN_APPROVER          | No pending entry for this approver
             | OUT_OF_TURN              | Sequential step guard violated
             | CLAIM_ALREADY_FINALIZED  | Decision on an approved/rejected claim
             | INVALID_ACTION           | Action is not approve/reject
-------------|--------------------------|------------------------------------------
Concurrency  | CONCURRENCY_CONFLICT     | Claim changed underneath the decision

"No applicable rule" is NOT an error: ``RuleCatalogService.resolve()``
returns ``None`` and the claim falls back to the manager-only policy.

===============================================================================
HANDLING PATTERNS
===============================================================================

1. Only ConcurrencyConflictError is retried automatically (bounded, see
   ``expense_services.retry.run_with_conflict_retry``).
2. Every other error is surfaced to the caller as a rejected request.
3. An error never leaves a half-applied decision behind: the service
   boundary rolls the session back.
"""

from __future__ import annotations


class ExpenseKernelError(Exception):
    """
    Base exception for all expense kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "EXPENSE_KERNEL_ERROR"


# Rule-related exceptions


class RuleError(ExpenseKernelError):
    """Base exception for approval rule errors."""

    code: str = "RULE_ERROR"


class RuleValidationError(RuleError):
    """Approval rule is malformed for its kind."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, rule_name: str, reason: str):
        self.rule_name = rule_name
        self.reason = reason
        super().__init__(f"Invalid approval rule '{rule_name}': {reason}")


class RuleNotFoundError(RuleError):
    """Approval rule with given ID was not found."""

    code: str = "RULE_NOT_FOUND"

    def __init__(self, rule_id: str):
        self.rule_id = rule_id
        super().__init__(f"Approval rule not found: {rule_id}")


# Claim-related exceptions


class ClaimError(ExpenseKernelError):
    """Base exception for claim errors."""

    code: str = "CLAIM_ERROR"


class ClaimNotFoundError(ClaimError):
    """Claim with given ID was not found."""

    code: str = "CLAIM_NOT_FOUND"

    def __init__(self, claim_id: str):
        self.claim_id = claim_id
        super().__init__(f"Claim not found: {claim_id}")


class InvalidClaimError(ClaimError):
    """Claim submission is missing or has malformed fields."""

    code: str = "INVALID_CLAIM"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid claim: {reason}")


# Decision-related exceptions


class DecisionError(ExpenseKernelError):
    """Base exception for approval decision errors."""

    code: str = "DECISION_ERROR"


class NotAnApproverError(DecisionError):
    """
    The actor has no pending approval entry on the claim.

    Raised both when the actor was never assigned and when they already
    decided.
    """

    code: str = "NOT_AN_APPROVER"

    def __init__(self, claim_id: str, approver_id: str):
        self.claim_id = claim_id
        self.approver_id = approver_id
        super().__init__(
            f"{approver_id} has no pending approval on claim {claim_id}"
        )


class OutOfTurnError(DecisionError):
    """The approver's step is not the claim's active step."""

    code: str = "OUT_OF_TURN"

    def __init__(self, claim_id: str, approver_id: str, current_step: int, entry_step: int):
        self.claim_id = claim_id
        self.approver_id = approver_id
        self.current_step = current_step
        self.entry_step = entry_step
        super().__init__(
            f"Claim {claim_id} is at approval step {current_step}; "
            f"{approver_id} is assigned to step {entry_step}"
        )


class ClaimAlreadyFinalizedError(DecisionError):
    """Decision submitted on a claim that is already approved or rejected."""

    code: str = "CLAIM_ALREADY_FINALIZED"

    def __init__(self, claim_id: str, status: str):
        self.claim_id = claim_id
        self.status = status
        super().__init__(f"Claim {claim_id} is already {status}")


class InvalidDecisionActionError(DecisionError):
    """Decision action is not one of approve/reject."""

    code: str = "INVALID_ACTION"

    def __init__(self, action: str):
        self.action = action
        super().__init__(f"Invalid decision action: {action!r}")


# Concurrency-related exceptions


class ConcurrencyError(ExpenseKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrencyConflictError(ConcurrencyError):
    """
    Optimistic lock conflict on a claim.

    The whole load/apply/evaluate/persist cycle must be retried in a fresh
    transaction.
    """

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, claim_id: str):
        self.claim_id = claim_id
        super().__init__(
            f"Concurrent modification of claim {claim_id}: "
            "claim was modified by another transaction"
        )
