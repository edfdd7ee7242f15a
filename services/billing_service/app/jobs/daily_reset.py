"""Daily token reset job, invoked by cron or the platform scheduler.

    python -m services.billing_service.app.jobs.daily_reset check
    python -m services.billing_service.app.jobs.daily_reset reset
    python -m services.billing_service.app.jobs.daily_reset reset-user <user_id>
    python -m services.billing_service.app.jobs.daily_reset expire

Each action prints a JSON document; the exit code is non-zero when the
action reported a failure.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Sequence
from typing import Any

from loguru import logger

from ..db.session import build_engine, build_session_factory
from ..services import DailyResetScheduler
from ..settings import BillingSettings, billing_settings
from ..startup import setup_logging


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the daily token reset of STANDARD wallets.")
    sub = parser.add_subparsers(dest="action", required=True)
    sub.add_parser("check", help="Report whether a reset is due and how many wallets are stale.")
    sub.add_parser("reset", help="Reset every stale STANDARD wallet to the daily allotment.")
    reset_user = sub.add_parser("reset-user", help="Force one user's STANDARD wallet back to the allotment.")
    reset_user.add_argument("user_id", help="User whose wallet is reset.")
    reset_user.add_argument("--actor-id", default=None, help="Operator recorded in the ledger entry.")
    sub.add_parser("expire", help="Deactivate wallets past their expiry.")
    return parser.parse_args(argv)


async def run_action(args: argparse.Namespace, settings: BillingSettings) -> tuple[bool, dict[str, Any]]:
    engine = build_engine(settings.async_db_url)
    try:
        scheduler = DailyResetScheduler(build_session_factory(engine), settings=settings)
        if args.action == "check":
            pending = await scheduler.pending_reset_count()
            return True, {
                "should_reset": pending > 0,
                "pending_count": pending,
                "boundary": scheduler.current_boundary().isoformat(),
            }
        if args.action == "reset":
            result = await scheduler.reset_all_users_tokens(trigger="scheduled")
            return result.success, {
                "success": result.success,
                "reset_count": result.reset_count,
                "message": result.message,
                "errors": [{"user_id": item.user_id, "error": item.error} for item in result.errors],
            }
        if args.action == "reset-user":
            outcome = await scheduler.reset_user_tokens(args.user_id, actor_id=args.actor_id or "cli")
            return outcome.success, {"success": outcome.success, "message": outcome.message}
        count = await scheduler.wallets.deactivate_expired_wallets()
        return True, {"deactivated": count}
    finally:
        await engine.dispose()


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    settings = billing_settings()
    setup_logging(settings, sink=sys.stderr)
    logger.bind(action=args.action).info("billing.job.daily_reset.started")
    ok, payload = asyncio.run(run_action(args, settings))
    print(json.dumps(payload, indent=2))
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
