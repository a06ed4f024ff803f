# sync_normalized_contacts.py
import asyncio
import json
import sys

from hubspot_client.client import get_hubspot_client
from hubspot_client.exceptions import HubSpotError
from services.property_sync import sync_properties_from_warehouse
from sync.errors import SyncAbortedError
from sync.models import SyncRequest
from utils import config
from utils.config import ConfigurationError
from utils.logger import get_logger
from warehouse.exceptions import WarehouseError
from warehouse.paginator import get_warehouse

logger = get_logger(__name__)


def build_request(table: str, apply: bool = True) -> SyncRequest:
    """Copies the warehouse's normalized country/state onto HubSpot contacts."""
    return SyncRequest(
        object_type="contacts",
        query=f"""
            SELECT
              id,
              country_normalized,
              state_normalized
            FROM {get_warehouse().quote_table(table)}
            WHERE country_normalized IS NOT NULL
        """,
        property_map={"country": "country_normalized", "state": "state_normalized"},
        id_column="id",
        match_key_type="id",
        apply=apply,
        audit_path=config.LOCAL_CONTACTS_EDITS,
    )


def sync(apply: bool = True):
    table = config.require_env("NORMALIZED_CONTACTS_TABLE")
    request = build_request(table, apply=apply)
    summary = asyncio.run(sync_properties_from_warehouse(request, get_hubspot_client(), get_warehouse()))
    logger.debug(f"Sync summary: {summary}")
    print(json.dumps(summary.model_dump(mode="json"), indent=2))
    return summary

if __name__ == "__main__":
    try:
        sync(apply="--dry-run" not in sys.argv[1:])
    except (ConfigurationError, SyncAbortedError, HubSpotError, WarehouseError) as e:
        logger.error(f"❌ Script failed: {e}")
        sys.exit(1)
