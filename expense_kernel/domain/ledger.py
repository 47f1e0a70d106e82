"""
DecisionLedger -- per-claim record of approval entries.

Responsibility:
    Holds a claim's approval entries as a dense array in creation order,
    indexed by ``sequence`` so that "all peers of a step" is a lookup, and
    applies a single approver's decision to the right entry.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Invariants enforced:
    - Entries are fixed at construction: nothing is ever appended or
      removed.  Only status/comment/decided_at change, by swapping in a
      decided copy of the frozen entry at the same index.
    - A decision only lands on a PENDING entry held by the approver.

Failure modes:
    - NotAnApproverError when the approver holds no pending entry
      (never assigned, or already decided).
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import replace
from datetime import datetime
from uuid import UUID

from expense_kernel.domain.approval import (
    ApprovalAction,
    ApprovalEntry,
    EntryStatus,
)
from expense_kernel.exceptions import NotAnApproverError

_ACTION_TO_STATUS = {
    ApprovalAction.APPROVE: EntryStatus.APPROVED,
    ApprovalAction.REJECT: EntryStatus.REJECTED,
}


class DecisionLedger:
    """Dense ordered array of approval entries with a sequence index."""

    def __init__(self, entries: Iterable[ApprovalEntry] = ()):
        self._entries: list[ApprovalEntry] = list(entries)
        self._by_sequence: dict[int, list[int]] = {}
        for idx, entry in enumerate(self._entries):
            self._by_sequence.setdefault(entry.sequence, []).append(idx)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ApprovalEntry]:
        return iter(self._entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DecisionLedger):
            return NotImplemented
        return self._entries == other._entries

    def __repr__(self) -> str:
        return f"<DecisionLedger entries={len(self._entries)} steps={self.sequences()}>"

    @property
    def entries(self) -> tuple[ApprovalEntry, ...]:
        return tuple(self._entries)

    def is_empty(self) -> bool:
        return not self._entries

    # ------------------------------------------------------------------
    # Sequence groups
    # ------------------------------------------------------------------

    def sequences(self) -> list[int]:
        """Distinct sequence numbers, ascending."""
        return sorted(self._by_sequence)

    def group(self, sequence: int) -> tuple[ApprovalEntry, ...]:
        """All peer entries sharing ``sequence`` (empty if none)."""
        return tuple(self._entries[i] for i in self._by_sequence.get(sequence, ()))

    def first_sequence(self) -> int:
        seqs = self.sequences()
        return seqs[0] if seqs else 0

    def next_sequence_after(self, sequence: int) -> int | None:
        """The next populated sequence group after ``sequence``, if any."""
        later = [s for s in self._by_sequence if s > sequence]
        return min(later) if later else None

    def group_approved(self, sequence: int) -> bool:
        return all(e.status == EntryStatus.APPROVED for e in self.group(sequence))

    # ------------------------------------------------------------------
    # Status queries
    # ------------------------------------------------------------------

    def any_rejected(self) -> bool:
        return any(e.status == EntryStatus.REJECTED for e in self._entries)

    def all_approved(self) -> bool:
        """True when every entry is approved (vacuously true when empty)."""
        return all(e.status == EntryStatus.APPROVED for e in self._entries)

    def entries_for(self, approver_id: UUID) -> tuple[ApprovalEntry, ...]:
        return tuple(e for e in self._entries if e.approver_id == approver_id)

    def pending_entry_for(self, approver_id: UUID) -> ApprovalEntry | None:
        idx = self._pending_index(approver_id)
        return self._entries[idx] if idx is not None else None

    def pending_approver_ids(self) -> set[UUID]:
        return {e.approver_id for e in self._entries if e.is_pending}

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def apply_decision(
        self,
        approver_id: UUID,
        action: ApprovalAction,
        comment: str,
        decided_at: datetime,
        *,
        claim_id: UUID | None = None,
    ) -> ApprovalEntry:
        """Record ``action`` on the approver's pending entry.

        Does not decide claim-level status; ``ApprovalEngine.evaluate``
        is invoked immediately after by the caller.

        Raises:
            NotAnApproverError: approver holds no pending entry.
        """
        idx = self._pending_index(approver_id)
        if idx is None:
            raise NotAnApproverError(str(claim_id), str(approver_id))

        decided = replace(
            self._entries[idx],
            status=_ACTION_TO_STATUS[ApprovalAction(action)],
            comment=comment or "",
            decided_at=decided_at,
        )
        self._entries[idx] = decided
        return decided

    def _pending_index(self, approver_id: UUID) -> int | None:
        # Builder emits sequences in ascending creation order, so the first
        # pending slot is also the earliest step the approver holds.
        for idx, entry in enumerate(self._entries):
            if entry.approver_id == approver_id and entry.is_pending:
                return idx
        return None
