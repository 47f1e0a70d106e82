"""
Module: expense_kernel.models.organization
Responsibility: ORM persistence for per-organization approval settings.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One settings row per organization (UNIQUE org_id).
    - An organization without a row behaves as ``manager_is_approver=True``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from expense_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from expense_kernel.domain.approval import OrganizationSettings


class OrganizationSettingsModel(TrackedBase):
    """Approval settings for one organization."""

    __tablename__ = "organization_settings"

    org_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, unique=True)
    base_currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    manager_is_approver: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True,
    )

    def __repr__(self) -> str:
        return (
            f"<OrganizationSettings {self.org_id} "
            f"base={self.base_currency} manager_is_approver={self.manager_is_approver}>"
        )

    def to_dto(self) -> OrganizationSettings:
        from expense_kernel.domain.approval import OrganizationSettings as SettingsDTO

        return SettingsDTO(
            org_id=self.org_id,
            base_currency=self.base_currency,
            manager_is_approver=self.manager_is_approver,
        )
