"""
CLI helper to create the forum schema and seed the fixed boards.
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
from chanboard.seed import SEED_BOARDS

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Initialize the forum database")
    parser.add_argument(
        "--database-url",
        type=str,
        default=None,
        help="SQLAlchemy URL (defaults to DATABASE_URL from settings)",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(message)s")

    database_url = args.database_url or get_settings().database_url
    try:
        db = SqlDbClient(database_url)
    except StorageError as exc:
        logger.error("Could not open database: %s", exc)
        return 1
    try:
        inserted = db.seed_boards(SEED_BOARDS)
        logger.info(
            "Seeded %d new boards (%d total)", inserted, len(db.list_boards())
        )
    except StorageError as exc:
        logger.error("Seeding failed: %s", exc)
        return 1
    finally:
        db.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
