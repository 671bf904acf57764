#!/usr/bin/env python3
"""
Run one income-payout sweep.

Requests a payout for every active, auto-scheduled income stream whose next
payout is due, then commits.  Intended to be run hourly from cron.

Usage:
  python3 scripts/run_payout_sweep.py [--organization-id UUID] [--db-url URL]
  python3 scripts/run_payout_sweep.py --create-tables --db-url sqlite:///guardrails.db

Environment:
  DATABASE_URL            database to sweep (default: sqlite:///guardrails.db)
  GUARDRAIL_CONFIG_PATH   alternate configuration YAML
"""

import argparse
import os
import sys
from pathlib import Path
from uuid import UUID

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

DEFAULT_DB_URL = os.environ.get("DATABASE_URL", "sqlite:///guardrails.db")


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Request payouts for due income streams")
    p.add_argument(
        "--organization-id",
        type=UUID,
        default=None,
        help="Only sweep this organization (default: all organizations)",
    )
    p.add_argument(
        "--db-url",
        default=DEFAULT_DB_URL,
        help="Database URL (default: DATABASE_URL or sqlite:///guardrails.db)",
    )
    p.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing tables before sweeping",
    )
    return p.parse_args()


def main() -> int:
    args = _parse_args()

    from guardrail_config import get_active_config
    from guardrail_kernel.db.engine import create_tables, get_session, init_engine_from_url
    from guardrail_services.container import GuardrailServices, build_provider_registry
    from guardrail_services.payout_scheduler import PayoutScheduler

    settings = get_active_config()
    init_engine_from_url(args.db_url)
    if args.create_tables:
        create_tables()

    registry = build_provider_registry(settings)
    scheduler = PayoutScheduler(
        session_factory=get_session,
        earn_factory=lambda session: GuardrailServices(session, settings, registry).earn,
        organization_id=args.organization_id,
    )
    with registry:
        result = scheduler.tick()

    if result is None:
        print("Payout sweep failed; see log output.", file=sys.stderr)
        return 1

    print(
        f"processed={result.processed} executed={result.executed} pending={result.pending} "
        f"skipped={result.skipped} failed={result.failed}"
    )
    return 1 if result.failed else 0


if __name__ == "__main__":
    sys.exit(main())
