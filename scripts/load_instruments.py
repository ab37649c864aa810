"""
Reads an instrument list CSV (``Ticker`` and ``Description`` columns) and
inserts or updates the rows of the ``instruments`` table.
"""

import argparse
import logging
import os
import sys
from typing import Optional

import pandas as pd

from market_feed_collect.config import load_settings
from market_feed_collect.database import Database
from market_feed_collect.errors import PersistenceError
from market_feed_collect.storage import MarketStore
from market_feed_collect.utils.logging_config import setup_logging

logger = logging.getLogger(__name__)

# Assuming the script is run from the project root
DEFAULT_CSV_PATH = "data/instruments.csv"
REQUIRED_COLUMNS = ["Ticker", "Description"]


def read_instruments(csv_path: str) -> list:
    """Maps CSV rows to instrument row dictionaries."""
    df = pd.read_csv(csv_path)
    if not all(col in df.columns for col in REQUIRED_COLUMNS):
        raise ValueError(f"CSV must contain columns: {REQUIRED_COLUMNS}")

    df = df.dropna(subset=["Ticker"])
    return [
        {
            "symbol": str(row["Ticker"]).strip().upper(),
            "company_name": None if pd.isna(row["Description"]) else str(row["Description"]),
            "active": True,
        }
        for _, row in df.iterrows()
    ]


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(description="Load instruments from a CSV file.")
    parser.add_argument("csv_path", nargs="?", default=DEFAULT_CSV_PATH, help="Path to the instrument CSV.")
    parser.add_argument("--config", help="Optional YAML configuration file.")
    args = parser.parse_args(argv)

    setup_logging(level=logging.INFO)
    if not os.path.exists(args.csv_path):
        logger.error(f"CSV file not found at {args.csv_path}")
        return 1

    try:
        rows = read_instruments(args.csv_path)
        logger.info(f"Read {len(rows)} instruments from {args.csv_path}.")
        settings = load_settings(args.config)
        with Database(settings.database_url) as database:
            MarketStore(database).upsert_instruments(rows)
    except (ValueError, PersistenceError) as e:
        logger.error(f"Loading instruments failed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
