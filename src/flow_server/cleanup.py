"""Snapshot retention CLI — ``flow-cleanup``.

Connects to the database and deletes stored session snapshots older than
a threshold.  Intended for cron jobs or one-off maintenance.

Examples::

    # Delete completed/aborted snapshots older than 30 days (default)
    flow-cleanup

    # Delete every snapshot older than 7 days, whatever its state
    flow-cleanup --days 7 --state running --state completed --state aborted
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from flow_server.config import DEFAULT_CLEANUP_DAYS

logger = logging.getLogger(__name__)


async def run_cleanup(
    *,
    days: int = DEFAULT_CLEANUP_DAYS,
    states: list[str] | None = None,
) -> int:
    """Delete old snapshots and return the number of removed rows.

    Creates its own database session and commits.  Safe to call from a
    CLI entry point or a scheduled task.
    """
    # Lazy imports to avoid loading DB machinery at module import time
    from flow_db.engine import dispose_engine, get_session_factory
    from flow_db.repository import SessionSnapshotRepository

    if states is None:
        states = ["completed", "aborted"]
    repo = SessionSnapshotRepository()
    factory = get_session_factory()

    try:
        async with factory() as db:
            affected = await repo.bulk_purge_old_sessions(
                db, older_than_days=days, states=states,
            )
            await db.commit()
        logger.info(
            "Cleanup complete: affected_rows=%d, days=%d, states=%s",
            affected, days, ",".join(states),
        )
        return affected
    finally:
        await dispose_engine()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="flow-cleanup",
        description="Delete old flow session snapshots from the database.",
    )
    parser.add_argument(
        "--days",
        type=int,
        default=DEFAULT_CLEANUP_DAYS,
        help="Age threshold in days (default: $DEFAULT_CLEANUP_DAYS or 30)",
    )
    parser.add_argument(
        "--state",
        action="append",
        default=None,
        choices=["running", "completed", "aborted"],
        help="Only target snapshots in this state (repeatable). Default: completed, aborted",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)",
    )
    return parser


def cli() -> None:
    """Console-script entry point: ``flow-cleanup``."""
    args = build_parser().parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    affected = asyncio.run(run_cleanup(days=args.days, states=args.state))
    print(f"Affected rows: {affected}")
    sys.exit(0)
