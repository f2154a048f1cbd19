#!/usr/bin/env python3
"""
Run one insight session for a signed-in user: resolve identity through Supabase, load the
notification ledger, evaluate the rules, then (unless --once) keep the snack / date-rollover /
token-refresh timers running until Ctrl-C.

Text generation goes to TEXT_GENERATION_BASE_URL (the backend's /claude-snack and /claude-report).

Usage: cd backend && python scripts/run_insight_session.py --access-token <jwt> [--refresh-token <t>] [--timezone <zone>] [--once]
       cd backend && python scripts/run_insight_session.py --reset-state <user_id>
"""
import argparse
import json
import logging
import sys
import time
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy import text

from macro_journal.db.session import SessionLocal
from macro_journal.db.tables import INSIGHT_STATE_TABLE_NAMES
from macro_journal.services.auth_client import GoTrueAuthProvider
from macro_journal.services.insight_engine import TRIGGER_MANUAL
from macro_journal.services.insight_runtime import InsightRuntime
from macro_journal.services.push import ApnsNotificationSurface


def reset_state(user_id: str) -> None:
    """Delete the user's notifications and settings so every rule can fire again. Entries are kept."""
    db = SessionLocal()
    try:
        for table in INSIGHT_STATE_TABLE_NAMES:
            n = db.execute(text(f"DELETE FROM {table} WHERE user_id = :user_id"), {"user_id": user_id}).rowcount
            print(f"Deleted {n} rows from {table}")
        db.commit()
    finally:
        db.close()


def main():
    parser = argparse.ArgumentParser(description="Run the insight engine for one user session")
    parser.add_argument("--access-token", help="Supabase access token (JWT) of the user")
    parser.add_argument("--refresh-token", help="Supabase refresh token; enables automatic token refresh")
    parser.add_argument("--timezone", help="IANA time zone of the user's device, e.g. America/Los_Angeles")
    parser.add_argument("--once", action="store_true", help="Run a single evaluation pass and exit")
    parser.add_argument("--reset-state", metavar="USER_ID", help="Clear notifications and settings for USER_ID, then exit")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    if args.reset_state:
        reset_state(args.reset_state)
        return 0
    if not args.access_token:
        parser.error("--access-token is required")

    provider = GoTrueAuthProvider()
    scheduler = None if args.once else BackgroundScheduler()
    runtime = InsightRuntime(
        provider,
        surface=ApnsNotificationSurface(SessionLocal),
        scheduler=scheduler,
        auto_evaluate=not args.once,
    )
    if args.timezone and not runtime.set_timezone(args.timezone):
        parser.error(f"unknown time zone: {args.timezone}")
    runtime.start()
    # Signing in emits SESSION_PRESENT, which resolves the user and bootstraps the first pass.
    provider.set_session(args.access_token, args.refresh_token)
    user_id = runtime.user_id
    if not user_id:
        print("Could not resolve a user for this access token.")
        return 1
    print(f"Signed in as {user_id} (runtime {runtime.runtime_id})")

    if args.once:
        result = runtime.engine.evaluate(TRIGGER_MANUAL)
        print(json.dumps(result.to_dict() if result else None, indent=2))
        for alert in runtime.ctx.drain_alerts():
            print(f"[{alert['type']}] {alert['title']}: {alert['body']}")
        return 0

    scheduler.start()
    print("Timers running. Ctrl-C to stop.")
    try:
        while runtime.user_id:
            time.sleep(1)
            for alert in runtime.ctx.drain_alerts():
                print(f"[{alert['type']}] {alert['title']}: {alert['body']}")
    except KeyboardInterrupt:
        pass
    finally:
        runtime.stop()
        scheduler.shutdown(wait=False)
    return 0


if __name__ == "__main__":
    sys.exit(main())
