"""
Configuration Loader (``expense_config.loader``).

Responsibility
--------------
Loads organization YAML files and parses them into typed
``expense_config.schema`` dataclasses.

Architecture position
---------------------
**Config layer** -- infrastructure tooling.  No dependency on the kernel
or engines; ``expense_config.bridges`` does the translation.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; required fields never get silent defaults.
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the raw
  document for change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Bad values (unknown approver key, bad UUID)  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any
from uuid import UUID

import yaml

from expense_config.schema import (
    ApproverDefinition,
    OrganizationDefinition,
    RuleDefinition,
    UserDefinition,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_uuid(value: Any) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise ValueError(f"Cannot parse UUID from {value!r}") from None


def parse_user(data: dict[str, Any]) -> UserDefinition:
    """Parse a ``UserDefinition`` from a dict."""
    return UserDefinition(
        key=str(data["key"]),
        role=str(data["role"]),
        name=data.get("name", ""),
        manager=data.get("manager"),
        user_id=parse_uuid(data["id"]) if data.get("id") else None,
    )


def parse_approver(data: dict[str, Any], position: int) -> ApproverDefinition:
    """Parse an approver slot; ``sequence`` defaults to list position."""
    if isinstance(data, str):
        return ApproverDefinition(user=data, sequence=position)
    return ApproverDefinition(
        user=str(data["user"]),
        sequence=int(data.get("sequence", position)),
        role=data.get("role", ""),
    )


def parse_rule(data: dict[str, Any]) -> RuleDefinition:
    """
    Parse a ``RuleDefinition`` from a dict.

    Amounts are kept as strings so they reach ``Decimal`` unrounded.
    """
    max_amount = data.get("max_amount")
    percentage = data.get("percentage_required")
    return RuleDefinition(
        name=data["name"],
        kind=data["kind"],
        description=data.get("description", ""),
        approvers=tuple(
            parse_approver(a, i) for i, a in enumerate(data.get("approvers", []))
        ),
        percentage_required=int(percentage) if percentage is not None else None,
        excluded_roles=tuple(data.get("excluded_roles", [])),
        specific_approver=data.get("specific_approver"),
        require_manager_first=bool(data.get("require_manager_first", False)),
        min_amount=str(data.get("min_amount", "0")),
        max_amount=str(max_amount) if max_amount is not None else None,
        categories=tuple(data.get("categories", [])),
        active=bool(data.get("active", True)),
    )


def parse_organization(data: dict[str, Any]) -> OrganizationDefinition:
    """
    Parse an ``OrganizationDefinition`` from a YAML document.

    Raises:
        KeyError: missing ``organization`` block or required field.
        ValueError: a rule references a user key that is not declared.
    """
    org = data["organization"]
    users = tuple(parse_user(u) for u in data.get("users", []))
    rules = tuple(parse_rule(r) for r in data.get("rules", []))

    known = {u.key for u in users}
    for user in users:
        if user.manager is not None and user.manager not in known:
            raise ValueError(f"User {user.key!r} has unknown manager {user.manager!r}")
    for rule in rules:
        referenced = [a.user for a in rule.approvers]
        if rule.specific_approver is not None:
            referenced.append(rule.specific_approver)
        missing = sorted(set(referenced) - known)
        if missing:
            raise ValueError(f"Rule {rule.name!r} references unknown users: {missing}")

    return OrganizationDefinition(
        org_id=parse_uuid(org["id"]),
        name=org["name"],
        base_currency=org.get("base_currency", "USD"),
        manager_is_approver=bool(org.get("manager_is_approver", True)),
        users=users,
        rules=rules,
        checksum=compute_checksum(data),
    )


def load_organization(path: Path) -> OrganizationDefinition:
    """Load and parse one organization YAML file."""
    return parse_organization(load_yaml_file(path))


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
