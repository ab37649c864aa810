"""
Script to initialize the database by creating tables for all defined models
and seeding the known timeframes.

Includes an option to drop existing tables before creation.
"""

import argparse
import logging
import sys
from typing import Optional

from market_feed_collect.config import load_settings
from market_feed_collect.database import Database
from market_feed_collect.storage.store import MarketStore
from market_feed_collect.utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def initialize_database(database: Database, drop_existing: bool = False):
    """
    Creates all tables and the timeframe rows.

    Args:
        database: Target database.
        drop_existing: If True, drops tables if they exist before creating them.
    """
    logger.info("Starting database initialization...")
    if drop_existing:
        logger.warning("Drop existing tables requested. Proceeding to drop tables...")
        database.drop_tables()

    database.create_tables()
    MarketStore(database).seed_timeframes()
    logger.info("Database initialization finished successfully.")


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Initialize the database by creating tables."
    )
    parser.add_argument(
        "--drop",
        action="store_true",
        help="Drop existing tables before creating them."
    )
    parser.add_argument("--config", help="Optional YAML configuration file.")
    args = parser.parse_args(argv)

    setup_logging(level=logging.INFO)
    try:
        settings = load_settings(args.config)
        with Database(settings.database_url) as database:
            initialize_database(database, drop_existing=args.drop)
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
