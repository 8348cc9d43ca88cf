"""Completion event outbox runner.

Safe to run from cron with --once, or as a long-lived worker. Several
runners may sweep the same table; claims are compare-and-swap.
"""

from __future__ import annotations

import argparse
import logging
import os

from awaredb.apps.integrations import publisher, services
from awaredb.database import WriteSessionLocal


def requeue() -> int:
    db = WriteSessionLocal()
    try:
        count = services.requeue_dead_letters(db)
        db.commit()
        return count
    finally:
        db.close()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Deliver pending completion events.")
    parser.add_argument("--once", action="store_true", help="run a single sweep and exit")
    parser.add_argument(
        "--requeue-dead-letters",
        action="store_true",
        help="move dead-lettered messages back to pending before sweeping",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "info").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.requeue_dead_letters:
        print("Requeued dead-lettered messages:", requeue())
    dispatched = publisher.run_outbox_loop(once=args.once)
    print("Outbox dispatch completed:", dispatched)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
