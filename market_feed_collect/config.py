"""Runtime configuration for the collector.

Values are resolved in this order (later wins):
    1. Defaults defined on ``Settings``.
    2. An optional YAML file passed to ``load_settings``.
    3. Environment variables (a ``.env`` file is loaded first if present).
"""

import logging
import os
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional
from urllib.parse import quote_plus

import yaml
from dotenv import load_dotenv

from market_feed_collect.timeframes import DEFAULT_EXCHANGE_TIMEZONE

logger = logging.getLogger(__name__)

# Environment variable name for each Settings field
ENV_VARS = {
    "database_url": "DATABASE_URL",
    "twelve_data_api_key": "TWELVE_DATA_API_KEY",
    "twelve_data_base_url": "TWELVE_DATA_BASE_URL",
    "pushover_token": "PUSHOVER_TOKEN",
    "pushover_user": "PUSHOVER_USER",
    "exchange_timezone": "EXCHANGE_TIMEZONE",
    "chunk_size": "PROVIDER_CHUNK_SIZE",
    "request_timeout": "PROVIDER_TIMEOUT",
    "requests_per_minute": "PROVIDER_REQUESTS_PER_MINUTE",
    "drain_max_attempts": "DRAIN_MAX_ATTEMPTS",
    "drain_retry_delay": "DRAIN_RETRY_DELAY",
    "benchmark_symbol": "BENCHMARK_SYMBOL",
    "max_workers": "MAX_WORKERS",
}


@dataclass
class Settings:
    database_url: str
    twelve_data_api_key: str = ""
    twelve_data_base_url: str = "https://api.twelvedata.com"
    pushover_token: Optional[str] = None
    pushover_user: Optional[str] = None
    exchange_timezone: str = DEFAULT_EXCHANGE_TIMEZONE
    chunk_size: int = 5
    request_timeout: float = 300.0
    requests_per_minute: int = 55
    drain_max_attempts: int = 3
    drain_retry_delay: float = 30.0
    benchmark_symbol: str = "SPY"
    max_workers: Optional[int] = None

    def __post_init__(self):
        if self.chunk_size < 1:
            raise ValueError("chunk_size must be at least 1")
        if self.drain_max_attempts < 1:
            raise ValueError("drain_max_attempts must be at least 1")


def _database_url_from_postgres_env() -> Optional[str]:
    """Builds a PostgreSQL URL from the individual POSTGRES_* variables."""
    host = os.getenv("POSTGRES_HOST")
    port = os.getenv("POSTGRES_PORT", "5432")
    database = os.getenv("POSTGRES_DATABASE")
    if not (host and database):
        return None

    auth_part = ""
    user = os.getenv("POSTGRES_USER")
    if user:
        auth_part = user
        password = os.getenv("POSTGRES_PASSWORD")
        if password:
            auth_part += f":{quote_plus(password)}"
        auth_part += "@"
    return f"postgresql+psycopg2://{auth_part}{host}:{port}/{database}"


def _coerce(name: str, raw: Any) -> Any:
    """Converts a raw YAML/env value to the type declared on Settings."""
    if raw is None or raw == "":
        return None
    if name in ("chunk_size", "requests_per_minute", "drain_max_attempts", "max_workers"):
        return int(raw)
    if name in ("request_timeout", "drain_retry_delay"):
        return float(raw)
    return str(raw)


def load_settings(config_path: Optional[str] = None) -> Settings:
    """
    Loads settings from an optional YAML file and the environment.

    Args:
        config_path: Path to a YAML file whose top-level keys match the
                     ``Settings`` field names.

    Raises:
        ValueError: If no database connection can be determined.
    """
    load_dotenv()

    values: Dict[str, Any] = {}
    if config_path:
        if os.path.exists(config_path):
            with open(config_path, "r") as f:
                file_values = yaml.safe_load(f) or {}
            known = {f.name for f in fields(Settings)}
            for key, value in file_values.items():
                if key in known:
                    values[key] = _coerce(key, value)
                else:
                    logger.warning(f"Ignoring unknown configuration key '{key}' in {config_path}")
        else:
            logger.warning(f"Configuration file {config_path} not found, using environment only.")

    for name, env_var in ENV_VARS.items():
        env_value = _coerce(name, os.getenv(env_var))
        if env_value is not None:
            values[name] = env_value

    if not values.get("database_url"):
        values["database_url"] = _database_url_from_postgres_env()
    if not values.get("database_url"):
        raise ValueError(
            "DATABASE_URL environment variable not set, "
            "and insufficient POSTGRES_ variables (POSTGRES_HOST, POSTGRES_DATABASE) "
            "to construct the URL."
        )

    values = {k: v for k, v in values.items() if v is not None}
    return Settings(**values)
