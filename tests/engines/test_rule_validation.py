"""
Tests for per-kind rule validation (``expense_engines.rule_validation``).
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from expense_engines.rule_validation import is_approval_eligible, validate_rule
from expense_kernel.domain.approval import (
    AmountThreshold,
    ApprovalRule,
    RuleApprover,
    RuleKind,
)
from expense_kernel.exceptions import RuleValidationError


def make_rule(kind=RuleKind.SEQUENTIAL, org_id=None, **kwargs) -> ApprovalRule:
    values = dict(
        rule_id=uuid4(),
        org_id=org_id or uuid4(),
        name="Travel policy",
        kind=kind,
    )
    values.update(kwargs)
    return ApprovalRule(**values)


def slots(*ids):
    return tuple(RuleApprover(approver_id=a, sequence_index=i) for i, a in enumerate(ids))


class TestEligibility:

    @pytest.mark.parametrize("role", ["manager", "admin", "ceo", "cfo", "cto", "director"])
    def test_eligible_roles(self, role):
        assert is_approval_eligible(role)

    @pytest.mark.parametrize("role", ["employee", "", None, "Manager"])
    def test_ineligible_roles(self, role):
        assert not is_approval_eligible(role)


class TestShapeRules:

    def test_sequential_needs_approvers(self):
        with pytest.raises(RuleValidationError, match="approvers are required"):
            validate_rule(make_rule(RuleKind.SEQUENTIAL))

    def test_sequential_with_approvers(self):
        validate_rule(make_rule(RuleKind.SEQUENTIAL, approvers=slots(uuid4())))

    def test_percentage_needs_percentage(self):
        with pytest.raises(RuleValidationError, match="percentage_required"):
            validate_rule(make_rule(RuleKind.PERCENTAGE, approvers=slots(uuid4())))

    @pytest.mark.parametrize("value", [0, 101, -5])
    def test_percentage_range(self, value):
        rule = make_rule(RuleKind.PERCENTAGE, approvers=slots(uuid4()), percentage_required=value)
        with pytest.raises(RuleValidationError, match="between 1 and 100"):
            validate_rule(rule)

    @pytest.mark.parametrize("value", [1, 100])
    def test_percentage_bounds_accepted(self, value):
        validate_rule(
            make_rule(RuleKind.PERCENTAGE, approvers=slots(uuid4()), percentage_required=value)
        )

    def test_specific_needs_approver(self):
        with pytest.raises(RuleValidationError, match="specific_approver_id"):
            validate_rule(make_rule(RuleKind.SPECIFIC))

    def test_hybrid_needs_everything(self):
        with pytest.raises(RuleValidationError):
            validate_rule(make_rule(RuleKind.HYBRID, percentage_required=50, specific_approver_id=uuid4()))
        with pytest.raises(RuleValidationError):
            validate_rule(make_rule(RuleKind.HYBRID, approvers=slots(uuid4()), specific_approver_id=uuid4()))
        with pytest.raises(RuleValidationError):
            validate_rule(make_rule(RuleKind.HYBRID, approvers=slots(uuid4()), percentage_required=50))
        validate_rule(
            make_rule(
                RuleKind.HYBRID,
                approvers=slots(uuid4()),
                percentage_required=50,
                specific_approver_id=uuid4(),
            )
        )

    def test_blank_name(self):
        with pytest.raises(RuleValidationError, match="name is required"):
            validate_rule(make_rule(RuleKind.SPECIFIC, name="  ", specific_approver_id=uuid4()))

    def test_unknown_kind(self):
        with pytest.raises(RuleValidationError, match="unknown rule kind"):
            validate_rule(make_rule(kind="round-robin"))

    def test_excluded_roles_restricted(self):
        rule = make_rule(
            RuleKind.PERCENTAGE,
            approvers=slots(uuid4()),
            percentage_required=50,
            excluded_roles=frozenset({"admin"}),
        )
        with pytest.raises(RuleValidationError, match="cannot be excluded"):
            validate_rule(rule)

    def test_negative_minimum(self):
        rule = make_rule(
            RuleKind.SPECIFIC,
            specific_approver_id=uuid4(),
            threshold=AmountThreshold(Decimal("-1")),
        )
        with pytest.raises(RuleValidationError, match="negative"):
            validate_rule(rule)

    def test_maximum_below_minimum(self):
        rule = make_rule(
            RuleKind.SPECIFIC,
            specific_approver_id=uuid4(),
            threshold=AmountThreshold(Decimal("500"), Decimal("100")),
        )
        with pytest.raises(RuleValidationError, match="below minimum"):
            validate_rule(rule)

    def test_error_carries_rule_name(self):
        with pytest.raises(RuleValidationError) as exc_info:
            validate_rule(make_rule(RuleKind.SPECIFIC, name="CFO sign-off"))
        assert exc_info.value.rule_name == "CFO sign-off"
        assert exc_info.value.code == "VALIDATION_ERROR"


class TestDirectoryChecks:

    def test_approver_from_other_org(self, directory, staff):
        rule = make_rule(RuleKind.SEQUENTIAL, org_id=staff.org_id, approvers=slots(staff.outsider))
        with pytest.raises(RuleValidationError, match="does not belong"):
            validate_rule(rule, directory)

    def test_ineligible_approver(self, directory, staff):
        rule = make_rule(RuleKind.SEQUENTIAL, org_id=staff.org_id, approvers=slots(staff.employee))
        with pytest.raises(RuleValidationError, match="cannot approve"):
            validate_rule(rule, directory)

    def test_specific_approver_checked(self, directory, staff):
        rule = make_rule(RuleKind.SPECIFIC, org_id=staff.org_id, specific_approver_id=staff.peer)
        with pytest.raises(RuleValidationError, match="cannot approve"):
            validate_rule(rule, directory)

    def test_valid_org_rule(self, directory, staff):
        rule = make_rule(
            RuleKind.SEQUENTIAL,
            org_id=staff.org_id,
            approvers=slots(staff.manager, staff.admin),
        )
        validate_rule(rule, directory)
