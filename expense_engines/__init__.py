"""
Module: expense_engines
Responsibility:
    Package entrypoint that re-exports the pure approval engines: rule
    validation, rule selection, workflow building and the approval state
    machine.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import expense_kernel.domain, expense_kernel.exceptions and
    expense_kernel.logging_config.  MUST NOT import services or models.

Invariants enforced:
    - Purity: engines NEVER call ``datetime.now()``; decision times are
      passed in by the caller.
    - Decimal-only amounts; percentage thresholds are compared in integers.
    - Determinism: identical inputs always produce identical outputs.

Usage:
    from expense_engines import ApprovalEngine, build_workflow, select_applicable_rule
"""

from expense_engines.approval import (
    ApprovalEngine,
    approval_percentage,
    eligible_entries,
    evaluate,
    percentage_met,
)
from expense_engines.rule_selection import rule_matches, select_applicable_rule
from expense_engines.rule_validation import is_approval_eligible, validate_rule
from expense_engines.tracer import compute_input_fingerprint, traced_engine
from expense_engines.workflow_builder import build_workflow, initial_step

__all__ = [
    "ApprovalEngine",
    "approval_percentage",
    "build_workflow",
    "compute_input_fingerprint",
    "eligible_entries",
    "evaluate",
    "initial_step",
    "is_approval_eligible",
    "percentage_met",
    "rule_matches",
    "select_applicable_rule",
    "traced_engine",
    "validate_rule",
]
