"""
expense_services.claims_api -- Transport-agnostic claim operations.

Responsibility:
    The host-facing surface of the engine: create a claim, submit a
    decision, read claims.  Each call runs in its own transaction, maps
    typed kernel errors to HTTP-like status codes, and retries decision
    conflicts a bounded number of times.

Architecture position:
    Services layer.  Owns transaction boundaries (``session_scope``);
    delegates everything else to kernel services.

Status codes:
    200 ok, 201 created
    400 InvalidClaimError, InvalidDecisionActionError, RuleValidationError,
        malformed payloads
    403 NotAnApproverError
    404 ClaimNotFoundError, RuleNotFoundError
    409 OutOfTurnError, ClaimAlreadyFinalizedError, ConcurrencyConflictError
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.orm import Session, sessionmaker

from expense_config.schema import EngineSettings
from expense_kernel.db.engine import session_scope
from expense_kernel.domain.approval import Claim, ClaimSubmission
from expense_kernel.domain.clock import Clock
from expense_kernel.domain.directory import OrgDirectory
from expense_kernel.exceptions import (
    ClaimAlreadyFinalizedError,
    ClaimNotFoundError,
    ConcurrencyConflictError,
    ExpenseKernelError,
    InvalidClaimError,
    InvalidDecisionActionError,
    NotAnApproverError,
    OutOfTurnError,
    RuleNotFoundError,
    RuleValidationError,
)
from expense_kernel.logging_config import LogContext, get_logger
from expense_kernel.services.claim_service import ClaimService
from expense_kernel.services.rule_catalog import RuleCatalogService
from expense_services.retry import run_with_conflict_retry

logger = get_logger("services.claims_api")

_STATUS_BY_ERROR: tuple[tuple[type[ExpenseKernelError], int], ...] = (
    (InvalidClaimError, 400),
    (InvalidDecisionActionError, 400),
    (RuleValidationError, 400),
    (NotAnApproverError, 403),
    (ClaimNotFoundError, 404),
    (RuleNotFoundError, 404),
    (OutOfTurnError, 409),
    (ClaimAlreadyFinalizedError, 409),
    (ConcurrencyConflictError, 409),
)


@dataclass(frozen=True)
class ApiResponse:
    status_code: int
    body: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


def serialize_claim(claim: Claim) -> dict[str, Any]:
    """JSON-safe view of a claim and its ledger."""
    return {
        "claim_id": str(claim.claim_id),
        "org_id": str(claim.org_id),
        "employee_id": str(claim.employee_id),
        "title": claim.title,
        "description": claim.description,
        "merchant_name": claim.merchant_name,
        "category": claim.category,
        "expense_date": claim.expense_date.isoformat() if claim.expense_date else None,
        "amount": str(claim.amount),
        "currency": claim.currency,
        "converted_amount": str(claim.converted_amount),
        "base_currency": claim.base_currency,
        "exchange_rate": str(claim.exchange_rate),
        "status": claim.status.value,
        "current_step": claim.current_step,
        "applied_rule_id": str(claim.applied_rule_id) if claim.applied_rule_id else None,
        "rule_name": claim.rule.name if claim.rule else None,
        "submitted_at": claim.submitted_at.isoformat() if claim.submitted_at else None,
        "finalized_at": claim.finalized_at.isoformat() if claim.finalized_at else None,
        "version": claim.version,
        "approvals": [
            {
                "approver_id": str(e.approver_id),
                "role": e.role_label,
                "sequence": e.sequence,
                "status": e.status.value,
                "comment": e.comment,
                "decided_at": e.decided_at.isoformat() if e.decided_at else None,
            }
            for e in claim.ledger
        ],
    }


def error_response(exc: ExpenseKernelError) -> ApiResponse:
    """Map a typed kernel error to a response with its machine code."""
    status = 500
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status = code
            break
    error: dict[str, Any] = {"code": exc.code, "message": str(exc)}
    if isinstance(exc, OutOfTurnError):
        error["current_step"] = exc.current_step
        error["entry_step"] = exc.entry_step
    if isinstance(exc, ClaimAlreadyFinalizedError):
        error["status"] = exc.status
    return ApiResponse(status, {"error": error})


def _bad_request(message: str) -> ApiResponse:
    return ApiResponse(400, {"error": {"code": InvalidClaimError.code, "message": message}})


def _parse_submission(payload: Mapping[str, Any]) -> ClaimSubmission:
    amount = Decimal(str(payload["amount"]))
    converted = payload.get("converted_amount")
    expense_date = payload.get("expense_date")
    return ClaimSubmission(
        org_id=UUID(str(payload["org_id"])),
        employee_id=UUID(str(payload["employee_id"])),
        title=str(payload["title"]),
        amount=amount,
        currency=str(payload.get("currency", "USD")).upper(),
        converted_amount=Decimal(str(converted)) if converted is not None else amount,
        category=str(payload["category"]),
        base_currency=str(payload.get("base_currency", "USD")).upper(),
        exchange_rate=Decimal(str(payload.get("exchange_rate", "1"))),
        description=str(payload.get("description", "")),
        merchant_name=str(payload.get("merchant_name", "")),
        expense_date=(
            date.fromisoformat(expense_date) if isinstance(expense_date, str) else expense_date
        ),
    )


class ClaimsApi:
    """Request handlers over the claim and rule services.

    Each method opens its own ``session_scope`` on ``session_factory``;
    the directory and clock are shared across requests.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        directory: OrgDirectory,
        clock: Clock | None = None,
        settings: EngineSettings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._directory = directory
        self._clock = clock
        self._settings = settings or EngineSettings()

    def _services(self, session: Session) -> ClaimService:
        catalog = RuleCatalogService(session, self._directory, self._clock)
        return ClaimService(session, catalog, self._directory, self._clock)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def create_claim(self, payload: Mapping[str, Any]) -> ApiResponse:
        """POST /claims"""
        try:
            submission = _parse_submission(payload)
        except KeyError as exc:
            return _bad_request(f"missing field {exc.args[0]!r}")
        except (ValueError, TypeError, InvalidOperation) as exc:
            return _bad_request(f"malformed claim payload: {exc}")

        with LogContext.bind(correlation_id=str(uuid4())):
            try:
                with session_scope(self._session_factory) as session:
                    claim = self._services(session).submit_claim(submission)
            except ExpenseKernelError as exc:
                return error_response(exc)
        return ApiResponse(201, {"claim": serialize_claim(claim)})

    def submit_decision(self, claim_id: UUID | str, payload: Mapping[str, Any]) -> ApiResponse:
        """POST /claims/{claim_id}/decisions"""
        try:
            claim_uuid = UUID(str(claim_id))
            approver_id = UUID(str(payload["approver_id"]))
            action = str(payload["action"])
        except KeyError as exc:
            return _bad_request(f"missing field {exc.args[0]!r}")
        except ValueError as exc:
            return _bad_request(f"malformed decision payload: {exc}")
        comment = str(payload.get("comment") or "")

        def attempt():
            with session_scope(self._session_factory) as session:
                claims = self._services(session)
                outcome = claims.record_decision(claim_uuid, approver_id, action, comment)
                return outcome, claims.get_claim(claim_uuid)

        with LogContext.bind(correlation_id=str(uuid4()), claim_id=str(claim_uuid)):
            try:
                outcome, claim = run_with_conflict_retry(
                    attempt,
                    attempts=self._settings.decision_retry_attempts,
                    backoff_seconds=self._settings.decision_retry_backoff,
                )
            except ExpenseKernelError as exc:
                return error_response(exc)

        return ApiResponse(
            200,
            {"message": outcome.message, "claim": serialize_claim(claim)},
        )

    def get_claim(self, claim_id: UUID | str) -> ApiResponse:
        """GET /claims/{claim_id}"""
        try:
            claim_uuid = UUID(str(claim_id))
        except ValueError as exc:
            return _bad_request(f"malformed claim id: {exc}")
        try:
            with session_scope(self._session_factory) as session:
                claim = self._services(session).get_claim(claim_uuid)
        except ExpenseKernelError as exc:
            return error_response(exc)
        return ApiResponse(200, {"claim": serialize_claim(claim)})

    def pending_approvals(
        self,
        approver_id: UUID | str,
        *,
        actionable_only: bool = False,
    ) -> ApiResponse:
        """GET /claims/pending-approvals"""
        try:
            approver_uuid = UUID(str(approver_id))
        except ValueError as exc:
            return _bad_request(f"malformed approver id: {exc}")
        with session_scope(self._session_factory) as session:
            claims = self._services(session).pending_for_approver(
                approver_uuid, actionable_only=actionable_only,
            )
        return ApiResponse(
            200,
            {"count": len(claims), "claims": [serialize_claim(c) for c in claims]},
        )

    def list_claims(
        self,
        org_id: UUID | str,
        *,
        status: str | None = None,
        category: str | None = None,
        employee_id: UUID | str | None = None,
    ) -> ApiResponse:
        """GET /claims"""
        try:
            org_uuid = UUID(str(org_id))
            employee_uuid = UUID(str(employee_id)) if employee_id is not None else None
            with session_scope(self._session_factory) as session:
                claims = self._services(session).list_claims(
                    org_uuid, status=status, category=category, employee_id=employee_uuid,
                )
        except ValueError as exc:
            return _bad_request(f"malformed filter: {exc}")
        return ApiResponse(
            200,
            {"count": len(claims), "claims": [serialize_claim(c) for c in claims]},
        )
