"""
expense_services.retry -- Bounded retry of optimistic-lock conflicts.

Only ``ConcurrencyConflictError`` is retried.  Every attempt must re-run
the whole load/apply/evaluate/persist cycle in a fresh transaction, so
``fn`` is expected to open (and commit) its own session scope.
"""

from __future__ import annotations

import time
from typing import Callable, TypeVar

from expense_kernel.exceptions import ConcurrencyConflictError
from expense_kernel.logging_config import get_logger

logger = get_logger("services.retry")

T = TypeVar("T")


def run_with_conflict_retry(
    fn: Callable[[], T],
    attempts: int = 3,
    backoff_seconds: float = 0.05,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn`` until it succeeds or ``attempts`` conflicts have occurred.

    Backoff is linear: ``backoff_seconds * attempt`` after each conflict.

    Raises:
        ConcurrencyConflictError: the last conflict, once attempts run out.
        Any other exception from ``fn`` propagates immediately.
    """
    if attempts < 1:
        raise ValueError(f"attempts must be >= 1, got {attempts}")

    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except ConcurrencyConflictError as exc:
            if attempt >= attempts:
                logger.warning(
                    "decision_retry_exhausted",
                    extra={"claim_id": exc.claim_id, "attempts": attempts},
                )
                raise
            logger.warning(
                "decision_retry",
                extra={
                    "claim_id": exc.claim_id,
                    "attempt": attempt,
                    "max_attempts": attempts,
                },
            )
            sleep(backoff_seconds * attempt)

    raise AssertionError("unreachable")
