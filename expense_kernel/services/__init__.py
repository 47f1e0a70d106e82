"""Kernel services: the persistence boundary around the engines."""

from expense_kernel.services.base import BaseService
from expense_kernel.services.claim_service import ClaimService
from expense_kernel.services.rule_catalog import RuleCatalogService

__all__ = [
    "BaseService",
    "ClaimService",
    "RuleCatalogService",
]
