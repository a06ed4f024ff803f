# hubspot_client/objects_client.py

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from hubspot import HubSpot
from hubspot.crm.companies import SimplePublicObjectInput as CompanyInput
from hubspot.crm.contacts import (
    SimplePublicObjectInput as ContactInput,
    BatchReadInputSimplePublicObjectId,
    BatchInputSimplePublicObjectId,
    SimplePublicObjectId,
)
from hubspot.crm.deals import SimplePublicObjectInput as DealInput
from hubspot.crm.objects import SimplePublicObjectInput as ObjectInput
from hubspot.crm.tickets import SimplePublicObjectInput as TicketInput

from utils.logger import get_logger
from .client import call_with_retry, post_json

logger = get_logger("hubspot_objects")

# HubSpot batch endpoints accept at most 100 inputs per request.
BATCH_LIMIT = 100

# Object types with a first-class SDK entry point. Anything else goes
# through the generic crm.objects API.
_UPDATE_PATHS = {
    "contacts": lambda client, record_id, props, **kw: client.crm.contacts.basic_api.update(record_id, ContactInput(properties=props), **kw),
    "companies": lambda client, record_id, props, **kw: client.crm.companies.basic_api.update(record_id, CompanyInput(properties=props), **kw),
    "deals": lambda client, record_id, props, **kw: client.crm.deals.basic_api.update(record_id, DealInput(properties=props), **kw),
    "tickets": lambda client, record_id, props, **kw: client.crm.tickets.basic_api.update(record_id, TicketInput(properties=props), **kw),
}


def to_hubspot_value(value: Any) -> str:
    """HubSpot property values travel as strings; booleans are lowercase."""
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return format(value, "f")
    return str(value)


def update_record(
    client: HubSpot,
    object_type: str,
    record_id: str,
    properties: Dict[str, Any],
    request_timeout: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Updates one record of object_type by its HubSpot id.

    Blocking; rate limits and 5xx are retried, everything else raises a
    typed HubSpotError. request_timeout bounds each HTTP attempt, so the
    calling thread always returns.
    """
    payload = {name: to_hubspot_value(value) for name, value in properties.items()}
    update_path = _UPDATE_PATHS.get(object_type)
    request_kwargs = {"_request_timeout": request_timeout} if request_timeout is not None else {}

    if update_path is not None:
        call = lambda: update_path(client, record_id, payload, **request_kwargs)
    else:
        call = lambda: client.crm.objects.basic_api.update(object_type, record_id, ObjectInput(properties=payload), **request_kwargs)

    logger.debug(f"Updating {object_type}/{record_id} with {payload}")
    api_response = call_with_retry(call, f"updating {object_type} {record_id}")
    return api_response.to_dict() if hasattr(api_response, "to_dict") else api_response


def _basic_api(client: HubSpot, object_type: str):
    if object_type in _UPDATE_PATHS:
        return getattr(client.crm, object_type).basic_api
    return None


def fetch_all_records(
    client: HubSpot,
    object_type: str,
    properties: List[str],
    associations: Optional[List[str]] = None,
    limit: int = 100,
) -> List[Dict[str, Any]]:
    """
    Pages through every record of object_type using the `after` cursor.

    Returns:
        list[dict]: {"id", "properties", "associations"} per record.
    """
    basic_api = _basic_api(client, object_type)
    records: List[Dict[str, Any]] = []
    after = None
    logger.info(f"🚀 Fetching {object_type} with properties {properties} (associations={associations or []})")

    while True:
        kwargs = {"limit": limit, "after": after, "properties": properties, "archived": False}
        if associations:
            kwargs["associations"] = associations

        if basic_api is not None:
            page = call_with_retry(lambda: basic_api.get_page(**kwargs), f"fetching {object_type} page")
        else:
            page = call_with_retry(
                lambda: client.crm.objects.basic_api.get_page(object_type, **kwargs),
                f"fetching {object_type} page",
            )

        for item in page.results:
            data = item.to_dict()
            records.append({
                "id": data.get("id"),
                "properties": data.get("properties") or {},
                "associations": data.get("associations") or {},
            })

        if page.paging and page.paging.next:
            after = page.paging.next.after
            logger.info(f"...fetched {len(records)} {object_type} so far (after={after})")
        else:
            break

    logger.info(f"✅ Finished fetching {len(records)} {object_type}.")
    return records


def associated_ids(record: Dict[str, Any], to_object_type: str) -> List[str]:
    """Ids of the records associated with `record` under to_object_type."""
    association = (record.get("associations") or {}).get(to_object_type) or {}
    return [str(r["id"]) for r in association.get("results") or [] if r.get("id")]


def get_record(client: HubSpot, object_type: str, record_id: str, properties: List[str]) -> Dict[str, Any]:
    """Reads one record by id; a missing id raises HubSpotNotFoundError."""
    basic_api = _basic_api(client, object_type)
    if basic_api is not None:
        call = lambda: basic_api.get_by_id(record_id, properties=properties, archived=False)
    else:
        call = lambda: client.crm.objects.basic_api.get_by_id(object_type, record_id, properties=properties, archived=False)
    data = call_with_retry(call, f"reading {object_type} {record_id}").to_dict()
    return {"id": data.get("id"), "properties": data.get("properties") or {}}


def batch_read_contacts(client: HubSpot, ids: List[str], properties: List[str]) -> List[Dict[str, Any]]:
    """Reads up to BATCH_LIMIT contacts by id. Unknown ids are simply absent from the result."""
    if len(ids) > BATCH_LIMIT:
        raise ValueError(f"batch_read_contacts accepts at most {BATCH_LIMIT} ids, got {len(ids)}")
    batch_input = BatchReadInputSimplePublicObjectId(
        inputs=[SimplePublicObjectId(id=str(i)) for i in ids],
        properties=properties,
        properties_with_history=[],
    )
    response = call_with_retry(
        lambda: client.crm.contacts.batch_api.read(batch_input, archived=False),
        f"batch reading {len(ids)} contacts",
    )
    results = []
    for item in response.results or []:
        data = item.to_dict()
        results.append({"id": data.get("id"), "properties": data.get("properties") or {}})
    return results


def archive_contacts(client: HubSpot, ids: List[str]) -> None:
    """Archives (soft-deletes) up to BATCH_LIMIT contacts."""
    if len(ids) > BATCH_LIMIT:
        raise ValueError(f"archive_contacts accepts at most {BATCH_LIMIT} ids, got {len(ids)}")
    batch_input = BatchInputSimplePublicObjectId(inputs=[SimplePublicObjectId(id=str(i)) for i in ids])
    call_with_retry(lambda: client.crm.contacts.batch_api.archive(batch_input), f"archiving {len(ids)} contacts")


def upsert_contacts_by_email(inputs: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Creates or updates up to BATCH_LIMIT contacts keyed by e-mail.

    Args:
        inputs: [{"email": ..., "properties": {...}}]
    """
    if len(inputs) > BATCH_LIMIT:
        raise ValueError(f"upsert_contacts_by_email accepts at most {BATCH_LIMIT} inputs, got {len(inputs)}")
    payload = {
        "inputs": [
            {
                "id": item["email"],
                "idProperty": "email",
                "properties": {k: to_hubspot_value(v) for k, v in item["properties"].items()},
            }
            for item in inputs
        ]
    }
    return post_json("/crm/v3/objects/contacts/batch/upsert", payload, f"upserting {len(inputs)} contacts by email")


def merge_contacts(primary_id: str, id_to_merge: str) -> Dict[str, Any]:
    """Merges contact id_to_merge into primary_id."""
    payload = {"primaryObjectId": str(primary_id), "objectIdToMerge": str(id_to_merge)}
    return post_json("/crm/v3/objects/contacts/merge", payload, f"merging contact {id_to_merge} into {primary_id}")
