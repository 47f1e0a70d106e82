"""
Expense Kernel - approval workflow core.

Claims, approval rules and per-claim decision ledgers, with:
- Deterministic rule resolution by amount window and category
- Sequential, percentage, specific-approver and hybrid approval policies
- Absolute reject veto and terminal-once claim lifecycle
- Atomic, optimistically locked decision recording
"""

__version__ = "0.1.0"
