#!/usr/bin/env python3
"""
Command-line front end for the expense approval engine.

The organization (users, settings, rules) comes from a YAML file; users
can be named by their YAML key or by UUID.

Usage:
    python3 scripts/claims_cli.py [--db-url URL] [--org-file PATH] <command> ...

Examples:
    python3 scripts/claims_cli.py init-db
    python3 scripts/claims_cli.py load-rules
    python3 scripts/claims_cli.py create-claim --employee alice --title "Taxi" \
        --amount 42.50 --category Travel
    python3 scripts/claims_cli.py decide <claim-id> --approver manager --action approve
    python3 scripts/claims_cli.py show <claim-id>
    python3 scripts/claims_cli.py pending --approver cfo
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from uuid import UUID

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

DEFAULT_ORG_FILE = ROOT / "expense_config" / "sets" / "acme.yaml"


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Submit expense claims and record approval decisions.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--db-url",
        default=None,
        help="Database URL (default: EXPENSE_DATABASE_URL or sqlite:///expense_workflow.db).",
    )
    parser.add_argument(
        "--org-file",
        type=Path,
        default=DEFAULT_ORG_FILE,
        help="Organization YAML file (default: bundled acme.yaml).",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create all tables.")
    sub.add_parser("load-rules", help="Store the organization's settings and rules.")

    create = sub.add_parser("create-claim", help="Submit a new claim.")
    create.add_argument("--employee", required=True, help="Employee key or UUID.")
    create.add_argument("--title", required=True)
    create.add_argument("--amount", required=True)
    create.add_argument("--category", required=True)
    create.add_argument("--currency", default=None, help="Default: organization base currency.")
    create.add_argument(
        "--converted-amount",
        default=None,
        help="Amount in base currency (default: --amount).",
    )
    create.add_argument("--exchange-rate", default="1")
    create.add_argument("--description", default="")
    create.add_argument("--merchant", default="")
    create.add_argument("--expense-date", default=None, help="YYYY-MM-DD")

    decide = sub.add_parser("decide", help="Approve or reject a claim.")
    decide.add_argument("claim_id")
    decide.add_argument("--approver", required=True, help="Approver key or UUID.")
    decide.add_argument("--action", required=True, choices=("approve", "reject"))
    decide.add_argument("--comment", default="")

    show = sub.add_parser("show", help="Print a claim and its approvals.")
    show.add_argument("claim_id")

    pending = sub.add_parser("pending", help="Claims waiting on an approver.")
    pending.add_argument("--approver", required=True, help="Approver key or UUID.")
    pending.add_argument(
        "--actionable-only",
        action="store_true",
        help="Only claims whose active step holds the approver.",
    )

    return parser.parse_args(argv)


def _resolve_user(value: str, ids: dict[str, UUID]) -> UUID:
    if value in ids:
        return ids[value]
    try:
        return UUID(value)
    except ValueError:
        raise SystemExit(f"ERROR: unknown user {value!r}; known keys: {sorted(ids)}") from None


def _print(body: dict) -> None:
    print(json.dumps(body, indent=2, sort_keys=True, default=str))


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    # Lazy imports so we fail fast on args first
    from expense_config import get_settings, load_organization
    from expense_config.bridges import apply_organization, build_directory, user_ids
    from expense_kernel.db.engine import (
        create_tables,
        get_session_factory,
        init_engine_from_url,
        session_scope,
    )
    from expense_kernel.exceptions import ExpenseKernelError
    from expense_kernel.logging_config import configure_logging
    from expense_kernel.services.claim_service import ClaimService
    from expense_kernel.services.rule_catalog import RuleCatalogService
    from expense_services.claims_api import ClaimsApi

    settings = get_settings()
    configure_logging(level=settings.log_level)
    init_engine_from_url(args.db_url or settings.database_url)

    if args.command == "init-db":
        create_tables()
        print("Tables created.")
        return 0

    try:
        org = load_organization(args.org_file)
    except (OSError, KeyError, ValueError) as exc:
        print(f"ERROR: cannot load organization file: {exc}", file=sys.stderr)
        return 1

    directory = build_directory(org)
    ids = user_ids(org)

    if args.command == "load-rules":
        try:
            with session_scope() as session:
                catalog = RuleCatalogService(session, directory)
                claims = ClaimService(session, catalog, directory)
                rules = apply_organization(org, catalog, claims)
        except ExpenseKernelError as exc:
            print(f"ERROR [{exc.code}]: {exc}", file=sys.stderr)
            return 1
        for rule in rules:
            print(f"{rule.rule_id}  v{rule.version}  {rule.kind.value:<10}  {rule.name}")
        return 0

    api = ClaimsApi(get_session_factory(), directory, settings=settings)

    if args.command == "create-claim":
        response = api.create_claim({
            "org_id": str(org.org_id),
            "employee_id": str(_resolve_user(args.employee, ids)),
            "title": args.title,
            "amount": args.amount,
            "currency": args.currency or org.base_currency,
            "converted_amount": args.converted_amount,
            "base_currency": org.base_currency,
            "exchange_rate": args.exchange_rate,
            "category": args.category,
            "description": args.description,
            "merchant_name": args.merchant,
            "expense_date": args.expense_date,
        })
    elif args.command == "decide":
        response = api.submit_decision(args.claim_id, {
            "approver_id": str(_resolve_user(args.approver, ids)),
            "action": args.action,
            "comment": args.comment,
        })
    elif args.command == "show":
        response = api.get_claim(args.claim_id)
    elif args.command == "pending":
        response = api.pending_approvals(
            _resolve_user(args.approver, ids),
            actionable_only=args.actionable_only,
        )
    else:
        print(f"ERROR: unknown command {args.command!r}", file=sys.stderr)
        return 2

    _print(response.body)
    return 0 if response.ok else 1


if __name__ == "__main__":
    sys.exit(main())
