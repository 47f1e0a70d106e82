"""
Tests for ledger construction (``expense_engines.workflow_builder``).
"""

from uuid import uuid4

from expense_engines.workflow_builder import build_workflow, initial_step
from expense_kernel.domain.approval import (
    MANAGER_ROLE,
    ApprovalRule,
    EntryStatus,
    RuleApprover,
    RuleKind,
)

ORG = uuid4()
MANAGER = uuid4()
A, B, C = uuid4(), uuid4(), uuid4()
ROLES = {A: "cfo", B: "ceo", C: "cto", MANAGER: "manager"}


def make_rule(kind, approvers=(), **kwargs):
    return ApprovalRule(
        rule_id=uuid4(),
        org_id=ORG,
        name="r",
        kind=kind,
        approvers=tuple(approvers),
        **kwargs,
    )


def shape(entries):
    return [(e.approver_id, e.sequence) for e in entries]


class TestNoRule:

    def test_manager_only(self):
        entries = build_workflow(rule=None, manager_id=MANAGER)
        assert shape(entries) == [(MANAGER, 0)]
        assert entries[0].role_label == MANAGER_ROLE
        assert entries[0].status == EntryStatus.PENDING

    def test_manager_not_an_approver(self):
        assert build_workflow(rule=None, manager_id=MANAGER, manager_is_approver=False) == []

    def test_no_manager(self):
        assert build_workflow(rule=None, manager_id=None) == []


class TestSequential:

    def test_sorted_by_sequence_index(self):
        rule = make_rule(
            RuleKind.SEQUENTIAL,
            [
                RuleApprover(C, sequence_index=5),
                RuleApprover(A, sequence_index=1),
                RuleApprover(B, sequence_index=2),
            ],
        )
        assert shape(build_workflow(rule=rule, manager_id=None)) == [(A, 0), (B, 1), (C, 2)]

    def test_manager_first_shifts_steps(self):
        rule = make_rule(
            RuleKind.SEQUENTIAL,
            [RuleApprover(A, 0), RuleApprover(B, 1)],
            require_manager_first=True,
        )
        entries = build_workflow(rule=rule, manager_id=MANAGER)
        assert shape(entries) == [(MANAGER, 0), (A, 1), (B, 2)]

    def test_manager_first_without_manager_is_skipped(self):
        rule = make_rule(RuleKind.SEQUENTIAL, [RuleApprover(A, 0)], require_manager_first=True)
        assert shape(build_workflow(rule=rule, manager_id=None)) == [(A, 0)]

    def test_rule_ignores_manager_is_approver_setting(self):
        rule = make_rule(RuleKind.SEQUENTIAL, [RuleApprover(A, 0)])
        entries = build_workflow(rule=rule, manager_id=MANAGER, manager_is_approver=True)
        assert shape(entries) == [(A, 0)]


class TestParallelKinds:

    def test_percentage_single_group(self):
        rule = make_rule(
            RuleKind.PERCENTAGE,
            [RuleApprover(A, 0), RuleApprover(B, 1), RuleApprover(C, 2)],
            percentage_required=50,
        )
        assert {s for _, s in shape(build_workflow(rule=rule, manager_id=None))} == {0}

    def test_specific_single_entry(self):
        rule = make_rule(RuleKind.SPECIFIC, specific_approver_id=A)
        assert shape(build_workflow(rule=rule, manager_id=None)) == [(A, 0)]

    def test_hybrid_group_plus_specific(self):
        rule = make_rule(
            RuleKind.HYBRID,
            [RuleApprover(B, 0), RuleApprover(C, 1)],
            percentage_required=50,
            specific_approver_id=A,
        )
        assert shape(build_workflow(rule=rule, manager_id=None)) == [(B, 0), (C, 0), (A, 0)]

    def test_hybrid_manager_first(self):
        rule = make_rule(
            RuleKind.HYBRID,
            [RuleApprover(B, 0)],
            percentage_required=50,
            specific_approver_id=A,
            require_manager_first=True,
        )
        entries = build_workflow(rule=rule, manager_id=MANAGER)
        assert shape(entries) == [(MANAGER, 0), (B, 1), (A, 1)]
        assert initial_step(entries) == 0


class TestRoleLabels:

    def test_rule_label_wins(self):
        rule = make_rule(RuleKind.SEQUENTIAL, [RuleApprover(A, 0, role_label="finance")])
        entries = build_workflow(rule=rule, manager_id=None, role_of=ROLES.get)
        assert entries[0].role_label == "finance"

    def test_directory_role_fallback(self):
        rule = make_rule(
            RuleKind.HYBRID,
            [RuleApprover(B, 0)],
            percentage_required=50,
            specific_approver_id=A,
        )
        entries = build_workflow(rule=rule, manager_id=None, role_of=ROLES.get)
        assert [e.role_label for e in entries] == ["ceo", "cfo"]

    def test_unknown_role_is_blank(self):
        rule = make_rule(RuleKind.SEQUENTIAL, [RuleApprover(uuid4(), 0)])
        entries = build_workflow(rule=rule, manager_id=None, role_of=ROLES.get)
        assert entries[0].role_label == ""


def test_initial_step_of_empty_ledger():
    assert initial_step([]) == 0


def test_sequences_never_decrease():
    rule = make_rule(
        RuleKind.SEQUENTIAL,
        [RuleApprover(A, 3), RuleApprover(B, 1), RuleApprover(C, 2)],
        require_manager_first=True,
    )
    seqs = [e.sequence for e in build_workflow(rule=rule, manager_id=MANAGER)]
    assert seqs == sorted(seqs)
