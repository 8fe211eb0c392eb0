"""
Moderator tool: pin/unpin and lock/unlock a thread directly in the database.

These flags have no HTTP endpoint on purpose; only operators with database
access can change them.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from chanboard.config import get_settings
from chanboard.db import SqlDbClient, StorageError

logger = logging.getLogger(__name__)


def _flag(value: str | None) -> bool | None:
    if value is None:
        return None
    return value == "on"


def main() -> int:
    parser = argparse.ArgumentParser(description="Set sticky/locked flags on a thread")
    parser.add_argument("thread_id", type=int, help="Thread to update")
    parser.add_argument("--sticky", choices=["on", "off"], default=None)
    parser.add_argument("--locked", choices=["on", "off"], default=None)
    parser.add_argument(
        "--database-url",
        type=str,
        default=None,
        help="SQLAlchemy URL (defaults to DATABASE_URL from settings)",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(message)s")

    if args.sticky is None and args.locked is None:
        parser.error("nothing to do: pass --sticky and/or --locked")

    db = SqlDbClient(args.database_url or get_settings().database_url)
    try:
        updated = db.set_thread_flags(
            args.thread_id,
            is_sticky=_flag(args.sticky),
            is_locked=_flag(args.locked),
        )
    except StorageError as exc:
        logger.error("Update failed: %s", exc)
        return 1
    finally:
        db.close()

    if not updated:
        logger.error("Thread %d not found", args.thread_id)
        return 1
    logger.info("Thread %d updated", args.thread_id)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
