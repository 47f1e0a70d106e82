"""
BaseService -- common constructor for kernel services.

Services receive a SQLAlchemy ``Session`` from the caller and persist with
``session.flush()``, never ``session.commit()`` or ``session.rollback()``.
The caller (``session_scope``, ``ClaimsApi`` or a test) owns the
transaction, so a claim and its ledger are written atomically or not at
all.
"""

from abc import ABC

from sqlalchemy.orm import Session

from expense_kernel.domain.clock import Clock, SystemClock


class BaseService(ABC):
    """Abstract base for services bound to one session and one clock."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    @property
    def session(self) -> Session:
        return self._session
