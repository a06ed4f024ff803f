# services/delete_candidates.py

import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from hubspot_client.exceptions import HubSpotError, error_detail
from hubspot_client.objects_client import BATCH_LIMIT, batch_read_contacts
from utils import config
from utils.config import ConfigurationError
from utils.logger import get_logger

logger = get_logger("delete_candidates")

DEFAULT_LIST_NAME = "BQ_DELETE_TABLE_IDS"
LIST_TABLE_SCHEMA = [
    ("list_name", "STRING"),
    ("source_table", "STRING"),
    ("contact_id", "STRING"),
    ("email", "STRING"),
    ("recommended_action", "STRING"),
    ("pulled_at", "TIMESTAMP"),
]


def _s(value: Any) -> str:
    return "" if value is None else str(value).strip()


def list_table_name(warehouse) -> str:
    """Fully qualified destination table built from BQ_DATASET and BQ_LIST_TABLE."""
    if not config.BQ_DATASET:
        raise ConfigurationError("Missing BQ_DATASET in .env")
    if not config.BQ_LIST_TABLE:
        raise ConfigurationError("Missing BQ_LIST_TABLE in .env")
    parts = [config.BQ_DATASET, config.BQ_LIST_TABLE]
    if getattr(warehouse, "name", None) == "bigquery" and config.BQ_PROJECT_ID:
        parts.insert(0, config.BQ_PROJECT_ID)
    return ".".join(parts)


def fetch_emails(client, ids: List[str], pause: float = 0.15) -> Dict[str, str]:
    """id -> e-mail from HubSpot, read in batches. A failed batch is logged and skipped."""
    id_to_email: Dict[str, str] = {}
    for start in range(0, len(ids), BATCH_LIMIT):
        batch = ids[start:start + BATCH_LIMIT]
        try:
            for contact in batch_read_contacts(client, batch, ["email"]):
                id_to_email[_s(contact["id"])] = _s(contact["properties"].get("email"))
        except HubSpotError as e:
            logger.error(f"❌ enrichment error: {error_detail(e)}")
        time.sleep(pause)
    return id_to_email


def build_list_rows(
    rows: List[Dict[str, Any]],
    list_name: str,
    source_table: str,
    pulled_at: str,
    id_to_email: Optional[Dict[str, str]] = None,
) -> List[Dict[str, Any]]:
    """
    One list row per source row with a contact id. When id_to_email is
    given (enrichment), the HubSpot e-mail wins over the warehouse one.
    """
    out = []
    for row in rows:
        contact_id = _s(row.get("contact_id"))
        if not contact_id:
            continue
        warehouse_email = _s(row.get("email"))
        if id_to_email is not None:
            email = _s(id_to_email.get(contact_id)) or warehouse_email
        else:
            email = warehouse_email
        out.append({
            "list_name": list_name,
            "source_table": source_table,
            "contact_id": contact_id,
            "email": email or None,
            "recommended_action": _s(row.get("recommended_action")) or None,
            "pulled_at": pulled_at,
        })
    return out


def export_delete_candidates(
    warehouse,
    hubspot_client=None,
    list_name: str = DEFAULT_LIST_NAME,
    limit: Optional[int] = None,
    enrich: bool = False,
    pause: float = 0.15,
) -> Dict[str, Any]:
    """Copies the contact ids of BQ_DELETE_TABLE into the contact-list table."""
    if not config.BQ_DELETE_TABLE:
        raise ConfigurationError("Missing BQ_DELETE_TABLE in .env")
    if enrich and hubspot_client is None:
        raise ConfigurationError("A HubSpot client is needed for enrichment (HUBSPOT_PERSONAL_ACCESS_KEY)")

    target = list_table_name(warehouse)
    warehouse.ensure_table(target, LIST_TABLE_SCHEMA)

    query = f"""
        SELECT
          CAST(id AS STRING) AS contact_id,
          CAST(email AS STRING) AS email,
          CAST(recommended_action AS STRING) AS recommended_action
        FROM {warehouse.quote_table(config.BQ_DELETE_TABLE)}
        WHERE id IS NOT NULL
    """
    if limit:
        query += f" LIMIT {int(limit)}"
    rows = warehouse.run_query(query)
    ids = [_s(r.get("contact_id")) for r in rows if _s(r.get("contact_id"))]
    logger.info(f"Fetched {len(ids)} contact ids from {config.BQ_DELETE_TABLE}")

    id_to_email = None
    if enrich:
        logger.info("Enriching emails from HubSpot...")
        id_to_email = fetch_emails(hubspot_client, ids, pause=pause)

    pulled_at = datetime.now(timezone.utc).isoformat()
    out_rows = build_list_rows(rows, list_name, config.BQ_DELETE_TABLE, pulled_at, id_to_email)
    inserted = warehouse.insert_rows(target, out_rows) if out_rows else 0
    logger.info(f"✅ Done. Wrote {inserted} rows into {target}")
    return {"table": target, "list_name": list_name, "rows": inserted}
