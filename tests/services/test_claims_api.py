"""
Tests for the transport-agnostic claim handlers (``expense_services.claims_api``)
and the conflict retry helper.

Each handler runs in its own committed transaction, so these tests use the
``session_factory`` fixture rather than the shared test session.
"""

from uuid import uuid4

import pytest

from expense_config.schema import EngineSettings
from expense_kernel.db.engine import session_scope
from expense_kernel.domain.approval import RuleApprover, RuleKind
from expense_kernel.exceptions import (
    ClaimAlreadyFinalizedError,
    ConcurrencyConflictError,
    ExpenseKernelError,
    NotAnApproverError,
    OutOfTurnError,
)
from expense_kernel.services.rule_catalog import RuleCatalogService
from expense_services.claims_api import ApiResponse, ClaimsApi, error_response
from expense_services.retry import run_with_conflict_retry


@pytest.fixture
def api(session_factory, directory, deterministic_clock):
    return ClaimsApi(
        session_factory,
        directory,
        deterministic_clock,
        settings=EngineSettings(decision_retry_backoff=0),
    )


@pytest.fixture
def sequential_rule(session_factory, directory, deterministic_clock, staff):
    with session_scope(session_factory) as session:
        return RuleCatalogService(session, directory, deterministic_clock).create_rule(
            org_id=staff.org_id,
            name="Manager then admin",
            kind=RuleKind.SEQUENTIAL,
            approvers=[RuleApprover(staff.manager, 0), RuleApprover(staff.admin, 1)],
        )


def claim_payload(staff, **overrides):
    payload = {
        "org_id": str(staff.org_id),
        "employee_id": str(staff.employee),
        "title": "Hotel",
        "amount": "240.50",
        "currency": "usd",
        "category": "Travel",
        "expense_date": "2024-05-02",
    }
    payload.update(overrides)
    return payload


class TestCreateClaim:

    def test_created(self, api, staff):
        response = api.create_claim(claim_payload(staff))

        assert response.status_code == 201
        assert response.ok
        body = response.body["claim"]
        assert body["status"] == "pending"
        assert body["currency"] == "USD"
        assert body["converted_amount"] == body["amount"]
        assert body["expense_date"] == "2024-05-02"
        assert body["approvals"][0]["approver_id"] == str(staff.manager)
        assert body["approvals"][0]["status"] == "pending"

    def test_missing_field(self, api, staff):
        payload = claim_payload(staff)
        del payload["title"]
        response = api.create_claim(payload)
        assert response.status_code == 400
        assert "title" in response.body["error"]["message"]

    def test_malformed_amount(self, api, staff):
        response = api.create_claim(claim_payload(staff, amount="twelve"))
        assert response.status_code == 400
        assert response.body["error"]["code"] == "INVALID_CLAIM"

    def test_invalid_claim(self, api, staff):
        response = api.create_claim(claim_payload(staff, category="Yachts"))
        assert response.status_code == 400
        assert response.body["error"]["code"] == "INVALID_CLAIM"

    def test_failed_create_stores_nothing(self, api, staff):
        api.create_claim(claim_payload(staff, amount="-1"))
        assert api.list_claims(staff.org_id).body["count"] == 0


class TestSubmitDecision:

    def test_full_sequential_flow(self, api, staff, sequential_rule):
        claim_id = api.create_claim(claim_payload(staff)).body["claim"]["claim_id"]

        early = api.submit_decision(claim_id, {"approver_id": str(staff.admin), "action": "approve"})
        assert early.status_code == 409
        assert early.body["error"]["code"] == "OUT_OF_TURN"
        assert early.body["error"]["current_step"] == 0
        assert early.body["error"]["entry_step"] == 1

        first = api.submit_decision(
            claim_id, {"approver_id": str(staff.manager), "action": "approve", "comment": "ok"},
        )
        assert first.status_code == 200
        assert first.body["message"] == "Decision recorded"
        assert first.body["claim"]["current_step"] == 1

        second = api.submit_decision(claim_id, {"approver_id": str(staff.admin), "action": "approve"})
        assert second.body["message"] == "Claim approved"
        assert second.body["claim"]["status"] == "approved"
        assert second.body["claim"]["rule_name"] == "Manager then admin"

        again = api.submit_decision(claim_id, {"approver_id": str(staff.admin), "action": "reject"})
        assert again.status_code == 409
        assert again.body["error"]["code"] == "CLAIM_ALREADY_FINALIZED"
        assert again.body["error"]["status"] == "approved"

    def test_stranger_is_forbidden(self, api, staff):
        claim_id = api.create_claim(claim_payload(staff)).body["claim"]["claim_id"]
        response = api.submit_decision(claim_id, {"approver_id": str(staff.cfo), "action": "approve"})
        assert response.status_code == 403
        assert response.body["error"]["code"] == "NOT_AN_APPROVER"

    def test_invalid_action(self, api, staff):
        claim_id = api.create_claim(claim_payload(staff)).body["claim"]["claim_id"]
        response = api.submit_decision(claim_id, {"approver_id": str(staff.manager), "action": "hold"})
        assert response.status_code == 400
        assert response.body["error"]["code"] == "INVALID_ACTION"

    def test_unknown_claim(self, api, staff):
        response = api.submit_decision(uuid4(), {"approver_id": str(staff.manager), "action": "approve"})
        assert response.status_code == 404

    def test_malformed_payload(self, api):
        assert api.submit_decision("not-a-uuid", {"approver_id": str(uuid4()), "action": "approve"}).status_code == 400
        assert api.submit_decision(uuid4(), {"action": "approve"}).status_code == 400


class TestReads:

    def test_get_claim(self, api, staff):
        claim_id = api.create_claim(claim_payload(staff)).body["claim"]["claim_id"]
        response = api.get_claim(claim_id)
        assert response.status_code == 200
        assert response.body["claim"]["claim_id"] == claim_id

    def test_get_unknown_claim(self, api):
        response = api.get_claim(uuid4())
        assert response.status_code == 404
        assert response.body["error"]["code"] == "CLAIM_NOT_FOUND"

    def test_pending_approvals(self, api, staff, sequential_rule):
        claim_id = api.create_claim(claim_payload(staff)).body["claim"]["claim_id"]

        assert api.pending_approvals(staff.admin).body["count"] == 1
        assert api.pending_approvals(staff.admin, actionable_only=True).body["count"] == 0
        manager_queue = api.pending_approvals(staff.manager, actionable_only=True).body
        assert [c["claim_id"] for c in manager_queue["claims"]] == [claim_id]

    def test_list_claims_bad_status(self, api, staff):
        response = api.list_claims(staff.org_id, status="archived")
        assert response.status_code == 400


class TestErrorResponse:

    @pytest.mark.parametrize(
        "exc, status",
        [
            (NotAnApproverError("c", "a"), 403),
            (OutOfTurnError("c", "a", 0, 2), 409),
            (ClaimAlreadyFinalizedError("c", "rejected"), 409),
            (ConcurrencyConflictError("c"), 409),
            (ExpenseKernelError("boom"), 500),
        ],
    )
    def test_status_mapping(self, exc, status):
        response = error_response(exc)
        assert response.status_code == status
        assert response.body["error"]["code"] == exc.code

    def test_ok(self):
        assert ApiResponse(201).ok
        assert not ApiResponse(404).ok


class TestConflictRetry:

    def test_retries_then_succeeds(self, captured_logs):
        calls = []
        sleeps = []

        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ConcurrencyConflictError("claim-1")
            return "done"

        assert run_with_conflict_retry(flaky, attempts=3, backoff_seconds=0.1, sleep=sleeps.append) == "done"
        assert len(calls) == 3
        assert sleeps == pytest.approx([0.1, 0.2])
        retries = [r for r in captured_logs() if r["message"] == "decision_retry"]
        assert [r["attempt"] for r in retries] == [1, 2]

    def test_exhausted_reraises(self, captured_logs):
        def always():
            raise ConcurrencyConflictError("claim-2")

        with pytest.raises(ConcurrencyConflictError):
            run_with_conflict_retry(always, attempts=2, backoff_seconds=0, sleep=lambda _: None)
        assert any(r["message"] == "decision_retry_exhausted" for r in captured_logs())

    def test_other_errors_are_not_retried(self):
        calls = []

        def fails():
            calls.append(1)
            raise NotAnApproverError("c", "a")

        with pytest.raises(NotAnApproverError):
            run_with_conflict_retry(fails, attempts=5, sleep=lambda _: None)
        assert len(calls) == 1

    def test_attempts_must_be_positive(self):
        with pytest.raises(ValueError):
            run_with_conflict_retry(lambda: None, attempts=0)
