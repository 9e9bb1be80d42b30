"""Utility script to create or reset the configured database schema."""
from __future__ import annotations

import argparse
import logging
import sys

from sqlalchemy.exc import SQLAlchemyError

from mideeye.core.settings import settings
from mideeye.db.session import create_tables, drop_tables

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Create or reset the Mideeye database tables")
    parser.add_argument(
        "--drop-tables",
        action="store_true",
        help="Drop every table before creating the schema again.",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="[manage_db] %(message)s")
    try:
        if args.drop_tables:
            drop_tables()
            logger.info("dropped all tables")
        create_tables()
    except SQLAlchemyError as exc:
        logger.error("ERROR: %s", exc)
        return 1

    logger.info("schema ready at %s", settings.effective_database_url)
    return 0


if __name__ == "__main__":
    sys.exit(main())
