"""
expense_kernel.services.rule_catalog -- Persistent approval rule catalog.

Responsibility:
    Create, update, deactivate, delete and list an organization's approval
    rules, and resolve the rule that governs a new claim.  Delegates
    per-kind validation to ``expense_engines.rule_validation`` and the
    selection itself to ``expense_engines.rule_selection``.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/ and engines.

Invariants enforced:
    - Every mutation re-validates the whole rule before it is flushed.
    - Every update (including deactivation) bumps ``version`` by one.
    - Claims carry a rule snapshot, so nothing here ever touches a claim.

Failure modes:
    - RuleValidationError on an invalid create/update.
    - RuleNotFoundError for an unknown rule_id.
"""

from __future__ import annotations

from dataclasses import fields, replace
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from expense_engines.rule_selection import select_applicable_rule
from expense_engines.rule_validation import validate_rule
from expense_kernel.domain.approval import (
    AmountThreshold,
    ApprovalRule,
    RuleKind,
)
from expense_kernel.domain.clock import Clock
from expense_kernel.domain.directory import OrgDirectory
from expense_kernel.exceptions import RuleNotFoundError, RuleValidationError
from expense_kernel.logging_config import get_logger
from expense_kernel.models.approval_rule import ApprovalRuleModel
from expense_kernel.services.base import BaseService

logger = get_logger("services.rule_catalog")

# Fields update_rule() refuses to touch.
_IDENTITY_FIELDS = frozenset({"rule_id", "org_id", "version", "created_at"})
_RULE_FIELDS = frozenset(f.name for f in fields(ApprovalRule))


def _normalize(
    rule_name: str,
    attributes: dict,
    base_threshold: AmountThreshold | None = None,
) -> dict:
    """Coerce loosely typed rule fields into the frozen DTO's types."""
    out = dict(attributes)
    min_amount = out.pop("min_amount", None)
    max_amount = out.pop("max_amount", None)

    kind = out.get("kind")
    if kind is not None and not isinstance(kind, RuleKind):
        try:
            out["kind"] = RuleKind(kind)
        except ValueError:
            raise RuleValidationError(rule_name, f"unknown rule kind {kind!r}") from None
    if "approvers" in out:
        out["approvers"] = tuple(out["approvers"])
    if "excluded_roles" in out:
        out["excluded_roles"] = frozenset(out["excluded_roles"])
    if "categories" in out:
        out["categories"] = frozenset(out["categories"])
    if min_amount is not None or max_amount is not None:
        base = out.get("threshold") or base_threshold or AmountThreshold()
        out["threshold"] = AmountThreshold(
            min_amount=Decimal(str(min_amount)) if min_amount is not None else base.min_amount,
            max_amount=Decimal(str(max_amount)) if max_amount is not None else base.max_amount,
        )
    return out


class RuleCatalogService(BaseService):
    """Stores approval rules and answers "which rule applies?".

    Contract:
        Returns frozen ``ApprovalRule`` DTOs; ORM rows never leave the
        service.
    """

    def __init__(
        self,
        session: Session,
        directory: OrgDirectory | None = None,
        clock: Clock | None = None,
    ) -> None:
        super().__init__(session, clock)
        self._directory = directory

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_rule(
        self,
        *,
        org_id: UUID,
        name: str,
        kind: RuleKind | str,
        rule_id: UUID | None = None,
        **attributes,
    ) -> ApprovalRule:
        """Validate and store a new rule at version 1.

        ``attributes`` are any other ``ApprovalRule`` fields, plus the
        ``min_amount``/``max_amount`` shorthand for ``threshold``.
        """
        self._reject_unknown(name, attributes, allowed=_RULE_FIELDS - _IDENTITY_FIELDS)
        now = self._clock.now()
        rule = ApprovalRule(
            rule_id=rule_id or uuid4(),
            org_id=org_id,
            name=name,
            version=1,
            created_at=now,
            **_normalize(name, {"kind": kind, **attributes}),
        )
        validate_rule(rule, self._directory)

        model = ApprovalRuleModel.from_dto(rule)
        model.created_at = now
        model.updated_at = now
        self._session.add(model)
        self._session.flush()

        logger.info(
            "rule_created",
            extra={
                "rule_id": str(rule.rule_id),
                "org_id": str(org_id),
                "rule_name": rule.name,
                "kind": rule.kind.value,
                "approver_count": len(rule.approvers),
            },
        )
        return model.to_dto()

    def update_rule(self, rule_id: UUID, **changes) -> ApprovalRule:
        """Apply ``changes`` to a rule, re-validate and bump its version."""
        model = self._load_rule_model(rule_id)
        current = model.to_dto()
        self._reject_unknown(current.name, changes, allowed=_RULE_FIELDS - _IDENTITY_FIELDS)

        updated = replace(
            current,
            version=current.version + 1,
            **_normalize(changes.get("name", current.name), changes, current.threshold),
        )
        validate_rule(updated, self._directory)

        model.apply_dto(updated)
        model.version = updated.version
        model.updated_at = self._clock.now()
        self._session.flush()

        logger.info(
            "rule_updated",
            extra={
                "rule_id": str(rule_id),
                "org_id": str(model.org_id),
                "version": model.version,
                "changed_fields": sorted(changes),
            },
        )
        return model.to_dto()

    def deactivate_rule(self, rule_id: UUID) -> ApprovalRule:
        """Take a rule out of resolution; claims already built keep it."""
        model = self._load_rule_model(rule_id)
        model.active = False
        model.version = model.version + 1
        model.updated_at = self._clock.now()
        self._session.flush()

        logger.info(
            "rule_deactivated",
            extra={"rule_id": str(rule_id), "org_id": str(model.org_id), "version": model.version},
        )
        return model.to_dto()

    def delete_rule(self, rule_id: UUID) -> None:
        """Remove a rule and its approver rows."""
        model = self._load_rule_model(rule_id)
        org_id = model.org_id
        self._session.delete(model)
        self._session.flush()

        logger.info("rule_deleted", extra={"rule_id": str(rule_id), "org_id": str(org_id)})

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_rule(self, rule_id: UUID) -> ApprovalRule:
        return self._load_rule_model(rule_id).to_dto()

    def list_rules(self, org_id: UUID, *, active_only: bool = False) -> list[ApprovalRule]:
        """Rules of an organization, newest first."""
        stmt = select(ApprovalRuleModel).where(ApprovalRuleModel.org_id == org_id)
        if active_only:
            stmt = stmt.where(ApprovalRuleModel.active.is_(True))
        stmt = stmt.order_by(
            ApprovalRuleModel.created_at.desc(),
            ApprovalRuleModel.rule_id.desc(),
        )
        return [m.to_dto() for m in self._session.execute(stmt).scalars().all()]

    def resolve(
        self,
        org_id: UUID,
        amount: Decimal,
        category: str,
    ) -> ApprovalRule | None:
        """The rule governing a claim, or None for the manager-only default."""
        candidates = self.list_rules(org_id, active_only=True)
        rule = select_applicable_rule(
            candidates, org_id=org_id, amount=amount, category=category,
        )

        if rule is None:
            logger.info(
                "no_applicable_rule",
                extra={
                    "org_id": str(org_id),
                    "amount": str(amount),
                    "category": category,
                    "candidate_count": len(candidates),
                },
            )
            return None

        logger.info(
            "rule_resolved",
            extra={
                "rule_id": str(rule.rule_id),
                "org_id": str(org_id),
                "rule_name": rule.name,
                "kind": rule.kind.value,
                "amount": str(amount),
                "category": category,
            },
        )
        return rule

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load_rule_model(self, rule_id: UUID) -> ApprovalRuleModel:
        model = self._session.execute(
            select(ApprovalRuleModel).where(ApprovalRuleModel.rule_id == rule_id)
        ).scalar_one_or_none()
        if model is None:
            raise RuleNotFoundError(str(rule_id))
        return model

    @staticmethod
    def _reject_unknown(rule_name: str, given: dict, allowed: frozenset[str]) -> None:
        unknown = set(given) - allowed - {"min_amount", "max_amount"}
        if unknown:
            raise RuleValidationError(rule_name, f"unknown or read-only fields: {sorted(unknown)}")
