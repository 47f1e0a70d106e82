"""
Expense configuration schema.

Typed, frozen forms of the two configuration sources:

  EngineSettings          = runtime knobs read from the environment
  OrganizationDefinition  = human-authored YAML: one organization, its
                            users and its approval rules

YAML files are parsed into these types by ``expense_config.loader`` and
turned into kernel inputs by ``expense_config.bridges``.  Users are
referred to by a short ``key`` inside a YAML file; the bridges map keys to
UUIDs.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

# ---------------------------------------------------------------------------
# Runtime settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EngineSettings:
    """Environment-driven engine settings."""

    database_url: str = "sqlite:///expense_workflow.db"
    decision_retry_attempts: int = 3
    decision_retry_backoff: float = 0.05
    log_level: str = "INFO"


# ---------------------------------------------------------------------------
# Organization definitions (declarative data)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UserDefinition:
    """A directory user declared in YAML."""

    key: str
    role: str
    name: str = ""
    manager: str | None = None  # key of the direct manager
    user_id: UUID | None = None  # derived from org + key when omitted


@dataclass(frozen=True)
class ApproverDefinition:
    """One approver slot of a YAML rule."""

    user: str  # user key
    sequence: int
    role: str = ""


@dataclass(frozen=True)
class RuleDefinition:
    """YAML-authored approval rule."""

    name: str
    kind: str
    description: str = ""
    approvers: tuple[ApproverDefinition, ...] = ()
    percentage_required: int | None = None
    excluded_roles: tuple[str, ...] = ()
    specific_approver: str | None = None  # user key
    require_manager_first: bool = False
    min_amount: str = "0"
    max_amount: str | None = None
    categories: tuple[str, ...] = ()
    active: bool = True


@dataclass(frozen=True)
class OrganizationDefinition:
    """One organization's approval configuration."""

    org_id: UUID
    name: str
    base_currency: str = "USD"
    manager_is_approver: bool = True
    users: tuple[UserDefinition, ...] = ()
    rules: tuple[RuleDefinition, ...] = ()
    checksum: str = ""
