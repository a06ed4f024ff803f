# utils/config.py

import os
from typing import Dict, Optional

from dotenv import load_dotenv

load_dotenv()


class ConfigurationError(ValueError):
    """Raised when a required setting is missing or invalid."""


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e


def _float_env(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    if raw.strip().lower() in ("none", "off"):
        return None
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from e


# --- HubSpot ---
HUBSPOT_ACCESS_TOKEN = os.getenv("HUBSPOT_PERSONAL_ACCESS_KEY") or os.getenv("HUBSPOT_API_KEY")
HUBSPOT_ACCOUNT_ID = os.getenv("HUBSPOT_ACCOUNT_ID")
HUBSPOT_API_URL = os.getenv("HUBSPOT_API_URL", "https://api.hubapi.com")
HUBSPOT_MAX_RETRIES = _int_env("HUBSPOT_MAX_RETRIES", 3)
HUBSPOT_INITIAL_RETRY_DELAY = _int_env("HUBSPOT_INITIAL_RETRY_DELAY", 2)  # seconds
HUBSPOT_MAX_RETRY_DELAY = 60  # seconds

# --- Warehouse ---
WAREHOUSE_BACKEND = os.getenv("WAREHOUSE_BACKEND", "bigquery").lower()

BQ_PROJECT_ID = os.getenv("BQ_PROJECT_ID")
BQ_LOCATION = os.getenv("BQ_LOCATION", "US")
BQ_UPDATE_TABLE = os.getenv("BQ_UPDATE_TABLE")
BQ_DELETE_TABLE = os.getenv("BQ_DELETE_TABLE")
BQ_MERGE_TABLE = os.getenv("BQ_MERGE_TABLE")
BQ_DATASET = os.getenv("BQ_DATASET")
BQ_LIST_TABLE = os.getenv("BQ_LIST_TABLE")

SNOWFLAKE_ACCOUNT = os.getenv("SNOWFLAKE_ACCOUNT")
SNOWFLAKE_USER = os.getenv("SNOWFLAKE_USER")
SNOWFLAKE_PASSWORD = os.getenv("SNOWFLAKE_PASSWORD")
SNOWFLAKE_WAREHOUSE = os.getenv("SNOWFLAKE_WAREHOUSE")
SNOWFLAKE_DATABASE = os.getenv("SNOWFLAKE_DATABASE", "HUBSPOT_DATA")
SNOWFLAKE_SCHEMA = os.getenv("SNOWFLAKE_SCHEMA", "PUBLIC")

# --- Local files ---
DATA_DIR = os.getenv("DATA_DIR", "data")
IMPORTS_DIR = os.getenv("IMPORTS_DIR", "imports")

# --- Property sync defaults ---
SYNC_PAGE_SIZE = _int_env("SYNC_PAGE_SIZE", 5000)
SYNC_WAVE_SIZE = _int_env("SYNC_WAVE_SIZE", 500)
SYNC_CONCURRENCY = _int_env("SYNC_CONCURRENCY", 10)
SYNC_UPDATE_TIMEOUT = _float_env("SYNC_UPDATE_TIMEOUT", 30.0)
SYNC_CHECKPOINT_PATH = os.getenv("SYNC_CHECKPOINT_PATH", "./data/processed_contact_ids.json")

# --- Country / state normalization job ---
NORMALIZED_CONTACTS_TABLE = os.getenv("NORMALIZED_CONTACTS_TABLE")
LOCAL_CONTACTS_EDITS = os.getenv("LOCAL_CONTACTS_EDITS", "./data/contact_updates.csv")

# Names reported by describe_environment(); secrets are masked.
_REPORTED_VARS = [
    "HUBSPOT_PERSONAL_ACCESS_KEY", "HUBSPOT_API_KEY", "HUBSPOT_ACCOUNT_ID",
    "WAREHOUSE_BACKEND", "BQ_PROJECT_ID", "BQ_LOCATION", "BQ_UPDATE_TABLE",
    "BQ_DELETE_TABLE", "BQ_MERGE_TABLE", "BQ_DATASET", "BQ_LIST_TABLE",
    "SNOWFLAKE_ACCOUNT", "SNOWFLAKE_USER", "SNOWFLAKE_PASSWORD",
    "SNOWFLAKE_WAREHOUSE", "SNOWFLAKE_DATABASE", "SNOWFLAKE_SCHEMA",
    "NORMALIZED_CONTACTS_TABLE", "LOCAL_CONTACTS_EDITS",
]
_SECRET_VARS = {"HUBSPOT_PERSONAL_ACCESS_KEY", "HUBSPOT_API_KEY", "SNOWFLAKE_PASSWORD"}


def require_env(name: str) -> str:
    """Returns the value of an environment variable or raises ConfigurationError."""
    value = os.getenv(name)
    if not value:
        raise ConfigurationError(f"Missing required environment variable: {name}")
    return value


def describe_environment() -> Dict[str, str]:
    """
    Reports which settings are present without leaking their values.

    Secrets show only their first 8 characters; everything else is
    reported as SET or MISSING.
    """
    report = {}
    for name in _REPORTED_VARS:
        value = os.getenv(name)
        if not value:
            report[name] = "MISSING"
        elif name in _SECRET_VARS:
            report[name] = f"SET ({value[:8]}...)"
        else:
            report[name] = "SET"
    return report
