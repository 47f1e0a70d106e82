"""
expense_config -- single public entrypoint for engine configuration.

Responsibility:
    ``get_settings()`` is the only reader of environment variables.
    ``load_organization()`` parses an organization YAML file (users,
    settings and approval rules) for the CLI and tests.

Architecture position:
    Configuration.  Sits above ``expense_kernel``; the kernel MUST NEVER
    import from ``expense_config``.  Bridges in this package translate
    parsed artifacts into kernel inputs.

Failure modes:
    - ``ValueError`` -- an environment variable or YAML value is malformed.
    - ``KeyError`` -- a required YAML key is missing.
    - ``FileNotFoundError`` -- the YAML file does not exist.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

from expense_config.loader import load_organization as _load_organization
from expense_config.schema import (
    ApproverDefinition,
    EngineSettings,
    OrganizationDefinition,
    RuleDefinition,
    UserDefinition,
)

_logger = logging.getLogger("expense_kernel.config")

# Sample organization sets shipped with the package
DEFAULT_SETS_DIR = Path(__file__).parent / "sets"

_VALID_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def get_settings(environ: Mapping[str, str] | None = None) -> EngineSettings:
    """Read ``EngineSettings`` from the environment.

    Variables:
        EXPENSE_DATABASE_URL            (default sqlite:///expense_workflow.db)
        EXPENSE_DECISION_RETRY_ATTEMPTS (default 3, at least 1)
        EXPENSE_DECISION_RETRY_BACKOFF  (default 0.05 seconds, not negative)
        EXPENSE_LOG_LEVEL               (default INFO)

    Raises:
        ValueError: a variable is present but malformed.
    """
    env = os.environ if environ is None else environ
    defaults = EngineSettings()

    attempts_raw = env.get("EXPENSE_DECISION_RETRY_ATTEMPTS")
    backoff_raw = env.get("EXPENSE_DECISION_RETRY_BACKOFF")
    try:
        attempts = int(attempts_raw) if attempts_raw else defaults.decision_retry_attempts
        backoff = float(backoff_raw) if backoff_raw else defaults.decision_retry_backoff
    except ValueError as exc:
        raise ValueError(f"Invalid retry setting: {exc}") from None
    if attempts < 1:
        raise ValueError(f"EXPENSE_DECISION_RETRY_ATTEMPTS must be >= 1, got {attempts}")
    if backoff < 0:
        raise ValueError(f"EXPENSE_DECISION_RETRY_BACKOFF must be >= 0, got {backoff}")

    log_level = env.get("EXPENSE_LOG_LEVEL", defaults.log_level).upper()
    if log_level not in _VALID_LOG_LEVELS:
        raise ValueError(f"EXPENSE_LOG_LEVEL must be one of {sorted(_VALID_LOG_LEVELS)}")

    return EngineSettings(
        database_url=env.get("EXPENSE_DATABASE_URL") or defaults.database_url,
        decision_retry_attempts=attempts,
        decision_retry_backoff=backoff,
        log_level=log_level,
    )


def load_organization(path: Path | str) -> OrganizationDefinition:
    """Parse an organization YAML file and log its checksum."""
    org = _load_organization(Path(path))
    _logger.info(
        "organization_config_loaded",
        extra={
            "org_id": str(org.org_id),
            "source": str(path),
            "checksum": org.checksum,
            "rule_count": len(org.rules),
            "user_count": len(org.users),
        },
    )
    return org


__all__ = [
    "DEFAULT_SETS_DIR",
    "ApproverDefinition",
    "EngineSettings",
    "OrganizationDefinition",
    "RuleDefinition",
    "UserDefinition",
    "get_settings",
    "load_organization",
]
