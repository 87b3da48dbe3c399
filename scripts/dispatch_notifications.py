"""
Drain the outbound e-mail queue. Pending rows and failed rows below
NOTIFICATION_MAX_ATTEMPTS are delivered oldest first.

Usage:
    python scripts/dispatch_notifications.py [--limit 100] [--loop --interval 30]
"""
import sys
import os
import time
import argparse

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

load_dotenv()

from solarcrm.db import SessionLocal
from solarcrm.logging import setup_logging
from solarcrm.services.notifications import deliver_pending


def run_once(limit: int) -> dict:
    db = SessionLocal()
    try:
        return deliver_pending(db, limit=limit)
    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Deliver queued e-mail notifications")
    parser.add_argument("--limit", type=int, default=100, help="Maximum rows per pass")
    parser.add_argument("--loop", action="store_true", help="Keep polling instead of exiting")
    parser.add_argument("--interval", type=int, default=30, help="Seconds between passes with --loop")
    args = parser.parse_args()

    setup_logging()
    while True:
        counts = run_once(args.limit)
        print(f"sent={counts.get('sent', 0)} failed={counts.get('failed', 0)} skipped={counts.get('skipped', 0)}")
        if not args.loop:
            break
        time.sleep(args.interval)
