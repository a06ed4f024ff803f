# services/bulk_actions.py

import time
from typing import Any, Dict, List, Optional

from hubspot_client.exceptions import HubSpotError, error_detail
from hubspot_client.objects_client import BATCH_LIMIT, archive_contacts, merge_contacts, upsert_contacts_by_email
from utils import config
from utils.config import ConfigurationError
from utils.logger import get_logger

logger = get_logger("bulk_actions")

UPDATE_PROPERTIES = [
    "firstname", "lastname", "phone", "jobtitle", "lifecyclestage",
    "hs_lead_status", "city", "state", "country",
]
ACTIONS = ["update", "delete", "merge", "all"]


def _s(value: Any) -> str:
    return "" if value is None else str(value).strip()


def _chunks(items: List[Any], size: int):
    for start in range(0, len(items), size):
        yield items[start:start + size]


def _source_query(warehouse, table: Optional[str], env_name: str, columns: str, limit: Optional[int]) -> str:
    if not table:
        raise ConfigurationError(f"Missing {env_name} in .env")
    query = f"SELECT {columns} FROM {warehouse.quote_table(table)}"
    if limit:
        query += f" LIMIT {int(limit)}"
    return query


def _result(action: str, apply: bool, prepared: int, done: int = 0, failed: int = 0) -> Dict[str, Any]:
    return {"action": action, "apply": apply, "prepared": prepared, "done": done, "failed": failed}


# --- UPDATE (upsert by e-mail) ---

def build_upsert_inputs(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Rows without an e-mail are dropped; blank properties are left out so they never overwrite data."""
    inputs = []
    for row in rows:
        email = _s(row.get("email")).lower()
        if not email:
            continue
        properties = {name: _s(row.get(name)) for name in UPDATE_PROPERTIES if _s(row.get(name))}
        inputs.append({"email": email, "properties": properties})
    return inputs


def run_update(client, warehouse, apply: bool = False, limit: Optional[int] = None, pause: float = 0.25) -> Dict[str, Any]:
    query = _source_query(warehouse, config.BQ_UPDATE_TABLE, "BQ_UPDATE_TABLE", "*", limit)
    logger.info(f"=== UPDATE (source: {config.BQ_UPDATE_TABLE}) ===")
    rows = warehouse.run_query(query)
    logger.info(f"Fetched {len(rows)} update rows")

    inputs = build_upsert_inputs(rows)
    logger.info(f"Prepared {len(inputs)} upsert inputs (email required)")
    if not apply:
        logger.info("DRY RUN: not sending updates to HubSpot. Use --apply to execute.")
        return _result("update", apply, len(inputs))

    done = failed = 0
    for batch in _chunks(inputs, BATCH_LIMIT):
        try:
            upsert_contacts_by_email(batch)
            done += len(batch)
            logger.info(f"✅ updated {done}/{len(inputs)}")
        except HubSpotError as e:
            failed += len(batch)
            logger.error(f"❌ update batch error: {error_detail(e)}")
        time.sleep(pause)
    return _result("update", apply, len(inputs), done, failed)


# --- DELETE (archive by id) ---

def run_delete(client, warehouse, apply: bool = False, limit: Optional[int] = None, pause: float = 0.25) -> Dict[str, Any]:
    query = _source_query(warehouse, config.BQ_DELETE_TABLE, "BQ_DELETE_TABLE", "id, email, recommended_action", limit)
    logger.info(f"=== DELETE (archive) (source: {config.BQ_DELETE_TABLE}) ===")
    rows = warehouse.run_query(query)
    logger.info(f"Fetched {len(rows)} delete rows")

    ids = [_s(r.get("id")) for r in rows if _s(r.get("id"))]
    logger.info(f"Prepared {len(ids)} ids to archive")
    if not apply:
        logger.info("DRY RUN: not archiving in HubSpot. Use --apply to execute.")
        return _result("delete", apply, len(ids))

    done = failed = 0
    for batch in _chunks(ids, BATCH_LIMIT):
        try:
            archive_contacts(client, batch)
            done += len(batch)
            logger.info(f"✅ archived {done}/{len(ids)}")
        except HubSpotError as e:
            failed += len(batch)
            logger.error(f"❌ archive batch error: {error_detail(e)}")
        time.sleep(pause)
    return _result("delete", apply, len(ids), done, failed)


# --- MERGE (primary_id <- merge_these_ids) ---

def build_merge_groups(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """merge_these_ids may come back as an array or as a comma-separated string."""
    groups = []
    for row in rows:
        raw_ids = row.get("merge_these_ids")
        if isinstance(raw_ids, (list, tuple)):
            merge_ids = [_s(i) for i in raw_ids if _s(i)]
        else:
            merge_ids = [_s(i) for i in _s(raw_ids).split(",") if _s(i)]
        primary_id = _s(row.get("primary_id"))
        if primary_id and merge_ids:
            groups.append({"merge_key": _s(row.get("merge_key")), "primary_id": primary_id, "merge_these_ids": merge_ids})
    return groups


def run_merge(client, warehouse, apply: bool = False, limit: Optional[int] = None, pause: float = 0.4) -> Dict[str, Any]:
    query = _source_query(warehouse, config.BQ_MERGE_TABLE, "BQ_MERGE_TABLE", "merge_key, primary_id, merge_these_ids", limit)
    logger.info(f"=== MERGE (source: {config.BQ_MERGE_TABLE}) ===")
    rows = warehouse.run_query(query)
    logger.info(f"Fetched {len(rows)} merge groups")

    groups = build_merge_groups(rows)
    pairs = sum(len(g["merge_these_ids"]) for g in groups)
    logger.info(f"Prepared {len(groups)} merge groups ({pairs} pairs)")
    if not apply:
        logger.info("DRY RUN: not merging in HubSpot. Use --apply to execute.")
        if groups:
            logger.info(f"Example group: {groups[0]}")
        return _result("merge", apply, pairs)

    merged = failed = 0
    for group in groups:
        for merge_id in group["merge_these_ids"]:
            try:
                merge_contacts(group["primary_id"], merge_id)
                merged += 1
                logger.info(f"✅ merged into {group['primary_id']} <- {merge_id} ({group['merge_key']}) [pairs={merged}]")
            except HubSpotError as e:
                failed += 1
                logger.error(f"❌ merge error primary={group['primary_id']} merge={merge_id}: {error_detail(e)}")
            time.sleep(pause)
    return _result("merge", apply, pairs, merged, failed)


def run_all(client, warehouse, apply: bool = False, limit: Optional[int] = None, pause: Optional[float] = None) -> List[Dict[str, Any]]:
    """Merge first so updates land on surviving records, then update, then archive."""
    kwargs = {"apply": apply, "limit": limit}
    if pause is not None:
        kwargs["pause"] = pause
    return [
        run_merge(client, warehouse, **kwargs),
        run_update(client, warehouse, **kwargs),
        run_delete(client, warehouse, **kwargs),
    ]


def run_action(action: str, client, warehouse, apply: bool = False, limit: Optional[int] = None, pause: Optional[float] = None):
    """Dispatches a bulk action by name. Unknown names raise KeyError."""
    handlers = {"update": run_update, "delete": run_delete, "merge": run_merge, "all": run_all}
    if action not in handlers:
        raise KeyError(f"Unknown bulk action '{action}'. Available: {', '.join(ACTIONS)}")
    logger.info(f"Mode: {'APPLY (writes to HubSpot)' if apply else 'DRY RUN (no writes)'}; action={action}"
                f"{f' (limit={limit})' if limit else ''}")
    kwargs = {"apply": apply, "limit": limit}
    if pause is not None:
        kwargs["pause"] = pause
    return handlers[action](client, warehouse, **kwargs)
