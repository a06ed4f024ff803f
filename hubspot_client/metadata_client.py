# hubspot_client/metadata_client.py

from typing import Any, Dict, List

from hubspot import HubSpot

from utils.logger import get_logger
from .client import call_with_retry

logger = get_logger("hubspot_metadata")


def fetch_properties(client: HubSpot, object_type: str) -> List[Dict[str, Any]]:
    """Returns every non-archived property definition of object_type as plain dicts."""
    logger.info(f"Fetching property definitions for {object_type}...")
    response = call_with_retry(
        lambda: client.crm.properties.core_api.get_all(object_type=object_type, archived=False),
        f"fetching {object_type} properties",
    )
    properties = [p.to_dict() for p in response.results or []]
    logger.info(f"✅ {len(properties)} {object_type} properties fetched.")
    return properties


def fetch_all_imports(client: HubSpot, limit: int = 100) -> List[Dict[str, Any]]:
    """Pages through the account's import history."""
    imports: List[Dict[str, Any]] = []
    after = None
    while True:
        page = call_with_retry(
            lambda: client.crm.imports.core_api.get_page(after=after, limit=limit),
            "fetching imports page",
        )
        imports.extend(item.to_dict() for item in page.results or [])
        if page.paging and page.paging.next:
            after = page.paging.next.after
        else:
            break
    logger.info(f"✅ {len(imports)} imports fetched.")
    return imports
