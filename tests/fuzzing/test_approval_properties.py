"""
Property-based tests for the approval engine using Hypothesis.

Properties:
- Veto: one rejected entry rejects the claim under every rule kind.
- Percentage boundary: exactly ceil(P * n / 100) approvals meets P%,
  one fewer does not.
- Step monotonicity: current_step never decreases, whatever decisions
  arrive and in whatever order.
- Terminal idempotence: once approved or rejected, every further decision
  is refused and the ledger does not change.
"""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID, uuid4

from hypothesis import given, settings
from hypothesis import strategies as st

from expense_engines.approval import ApprovalEngine, evaluate, percentage_met
from expense_engines.workflow_builder import build_workflow, initial_step
from expense_kernel.domain.approval import (
    ApprovalEntry,
    ApprovalRule,
    Claim,
    ClaimStatus,
    EntryStatus,
    RuleApprover,
    RuleKind,
)
from expense_kernel.domain.ledger import DecisionLedger
from expense_kernel.exceptions import DecisionError

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)
ORG = uuid4()
MANAGER = UUID(int=1)
POOL = [UUID(int=i) for i in range(2, 12)]

entry_statuses = st.sampled_from(list(EntryStatus))
actions = st.sampled_from(["approve", "reject"])


def make_rule(kind: RuleKind, approver_count: int, percentage: int, manager_first: bool):
    return ApprovalRule(
        rule_id=uuid4(),
        org_id=ORG,
        name="fuzz",
        kind=kind,
        approvers=tuple(RuleApprover(POOL[i], i) for i in range(approver_count)),
        percentage_required=percentage,
        specific_approver_id=POOL[0],
        require_manager_first=manager_first,
    )


def make_claim(rule: ApprovalRule) -> Claim:
    entries = build_workflow(rule=rule, manager_id=MANAGER)
    return Claim(
        claim_id=uuid4(),
        org_id=ORG,
        employee_id=uuid4(),
        title="fuzz",
        amount=Decimal("10"),
        currency="USD",
        converted_amount=Decimal("10"),
        category="Other",
        ledger=DecisionLedger(entries),
        current_step=initial_step(entries),
        rule=rule,
    )


rules = st.builds(
    make_rule,
    kind=st.sampled_from(list(RuleKind)),
    approver_count=st.integers(min_value=1, max_value=len(POOL)),
    percentage=st.integers(min_value=1, max_value=100),
    manager_first=st.booleans(),
)

decisions = st.lists(
    st.tuples(st.sampled_from([MANAGER, *POOL]), actions),
    max_size=25,
)


@given(
    rule=rules,
    statuses=st.lists(entry_statuses, min_size=1, max_size=10),
    veto_at=st.integers(min_value=0, max_value=9),
)
def test_any_rejection_is_a_veto(rule, statuses, veto_at):
    statuses[veto_at % len(statuses)] = EntryStatus.REJECTED
    ledger = DecisionLedger(
        ApprovalEntry(approver_id=POOL[i % len(POOL)], sequence=0, status=s)
        for i, s in enumerate(statuses)
    )
    assert evaluate(ledger, rule) == ClaimStatus.REJECTED
    assert evaluate(ledger, None) == ClaimStatus.REJECTED


@given(
    eligible=st.integers(min_value=1, max_value=40),
    excluded=st.integers(min_value=0, max_value=5),
    required=st.integers(min_value=1, max_value=100),
)
def test_percentage_boundary(eligible, excluded, required):
    needed = -(-required * eligible // 100)

    def ledger_with(approved):
        voters = [
            ApprovalEntry(uuid4(), 0, "cfo", EntryStatus.APPROVED if i < approved else EntryStatus.PENDING)
            for i in range(eligible)
        ]
        # excluded roles approve too, but never count
        bystanders = [ApprovalEntry(uuid4(), 0, "manager", EntryStatus.APPROVED) for _ in range(excluded)]
        return voters + bystanders

    assert percentage_met(ledger_with(needed), required, frozenset({"manager"}))
    assert not percentage_met(ledger_with(needed - 1), required, frozenset({"manager"}))


@settings(max_examples=200)
@given(rule=rules, moves=decisions)
def test_current_step_never_decreases(rule, moves):
    engine = ApprovalEngine()
    claim = make_claim(rule)
    last_step = claim.current_step

    for approver_id, action in moves:
        try:
            engine.apply(claim, approver_id, action, "", NOW)
        except DecisionError:
            pass
        assert claim.current_step >= last_step
        assert claim.current_step in claim.ledger.sequences()
        last_step = claim.current_step


@settings(max_examples=200)
@given(rule=rules, moves=decisions)
def test_terminal_state_is_final(rule, moves):
    engine = ApprovalEngine()
    claim = make_claim(rule)

    for approver_id, action in moves:
        was_final = claim.is_final
        before = claim.ledger.entries
        try:
            engine.apply(claim, approver_id, action, "", NOW)
        except DecisionError:
            assert claim.ledger.entries == before
            continue
        assert not was_final
        if claim.is_final:
            assert claim.finalized_at == NOW
        else:
            assert claim.finalized_at is None


@given(
    approver_count=st.integers(min_value=1, max_value=len(POOL)),
    percentage=st.integers(min_value=1, max_value=100),
)
def test_hybrid_specific_short_circuit(approver_count, percentage):
    rule = make_rule(RuleKind.HYBRID, approver_count, percentage, manager_first=False)
    claim = make_claim(rule)

    outcome = ApprovalEngine().apply(claim, POOL[0], "approve", "", NOW)

    assert outcome.new_status == ClaimStatus.APPROVED
