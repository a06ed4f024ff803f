# services/exporters.py

import glob
import json
import os
from typing import Any, Callable, Dict, List, Optional

from hubspot import HubSpot

from hubspot_client.metadata_client import fetch_all_imports, fetch_properties
from hubspot_client.objects_client import associated_ids, fetch_all_records
from utils import config
from utils.csv_utils import ensure_dir_for_file, read_csv, write_csv
from utils.logger import get_logger

logger = get_logger("exporters")

CONTACT_FIELDS = ["email", "firstname", "lastname", "phone"]
COMPANY_FIELDS = [
    "name", "domain", "industry", "city", "state", "country", "numberofemployees",
    "annualrevenue", "lifecyclestage", "createdate", "lastmodifieddate",
]
DEAL_FIELDS = [
    "dealname", "amount", "closedate", "dealstage", "pipeline",
    "hubspot_owner_id", "createdate", "lastmodifieddate",
]
PROPERTY_EXPORT_OBJECTS = ["contacts", "companies", "deals"]
PROPERTY_HEADERS = [
    "objectType", "name", "label", "description", "groupName", "type",
    "fieldType", "hubspotDefined", "createdAt", "updatedAt", "options_json",
]
CONTACT_PROPERTY_HEADERS = [
    "name", "label", "description", "groupName", "type", "fieldType", "formField",
    "hidden", "readOnlyValue", "calculated", "externalOptions", "displayOrder",
    "hasUniqueValue", "option_values", "option_labels", "referencedObjectType",
]
IMPORT_HEADERS = [
    "id", "importName", "state", "createdAt", "updatedAt", "startedAt", "completedAt",
    "numRows", "numSucceeded", "numFailed", "fileIds", "objectTypeIds", "metadata_json",
]


def _out(data_dir: Optional[str], filename: str) -> str:
    return os.path.join(data_dir or config.DATA_DIR, filename)


def _text(value: Any) -> str:
    if value is None:
        return ""
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def _flag(value: Any) -> str:
    return "true" if value is True else "false"


def _camel(prop: Dict[str, Any], key: str, camel_key: str) -> Any:
    # SDK to_dict() gives snake_case keys; raw API payloads use camelCase.
    return prop.get(key, prop.get(camel_key))


# --- Records ---

def export_contacts(client: HubSpot, data_dir: Optional[str] = None) -> Dict[str, Any]:
    contacts = fetch_all_records(client, "contacts", CONTACT_FIELDS)
    rows = [{"id": c["id"], **{f: _text(c["properties"].get(f)) for f in CONTACT_FIELDS}} for c in contacts]
    path = _out(data_dir, "contacts.csv")
    write_csv(path, rows, ["id"] + CONTACT_FIELDS)
    logger.info(f"📁 Contacts export written to: {path}")
    return {"path": path, "rows": len(rows)}


def export_companies(client: HubSpot, data_dir: Optional[str] = None) -> Dict[str, Any]:
    """Companies with their associated contact ids (pipe-separated)."""
    companies = fetch_all_records(client, "companies", COMPANY_FIELDS, associations=["contacts"])
    rows = []
    for c in companies:
        row = {"id": c["id"], **{f: _text(c["properties"].get(f)) for f in COMPANY_FIELDS}}
        row["contact_ids"] = "|".join(associated_ids(c, "contacts"))
        rows.append(row)
    path = _out(data_dir, "companies_export.csv")
    write_csv(path, rows, ["id"] + COMPANY_FIELDS + ["contact_ids"])
    logger.info(f"📁 Companies export written to: {path}")
    return {"path": path, "rows": len(rows)}


def export_deals(client: HubSpot, data_dir: Optional[str] = None) -> Dict[str, Any]:
    """Deals with associated contact and company ids (pipe-separated)."""
    deals = fetch_all_records(client, "deals", DEAL_FIELDS, associations=["contacts", "companies"])
    rows = []
    for d in deals:
        row = {"id": d["id"], **{f: _text(d["properties"].get(f)) for f in DEAL_FIELDS}}
        row["contact_ids"] = "|".join(associated_ids(d, "contacts"))
        row["company_ids"] = "|".join(associated_ids(d, "companies"))
        rows.append(row)
    path = _out(data_dir, "deals_export.csv")
    write_csv(path, rows, ["id"] + DEAL_FIELDS + ["contact_ids", "company_ids"])
    logger.info(f"📁 Deals export written to: {path}")
    return {"path": path, "rows": len(rows)}


# --- Metadata ---

def export_properties(client: HubSpot, data_dir: Optional[str] = None) -> Dict[str, Any]:
    """Property definitions of contacts, companies and deals in one CSV."""
    rows = []
    for object_type in PROPERTY_EXPORT_OBJECTS:
        for p in fetch_properties(client, object_type):
            rows.append({
                "objectType": object_type,
                "name": _text(p.get("name")),
                "label": _text(p.get("label")),
                "description": _text(p.get("description")),
                "groupName": _text(_camel(p, "group_name", "groupName")),
                "type": _text(p.get("type")),
                "fieldType": _text(_camel(p, "field_type", "fieldType")),
                "hubspotDefined": _text(_camel(p, "hubspot_defined", "hubspotDefined")),
                "createdAt": _text(_camel(p, "created_at", "createdAt")),
                "updatedAt": _text(_camel(p, "updated_at", "updatedAt")),
                "options_json": json.dumps(p.get("options") or [], default=str),
            })
    path = _out(data_dir, "properties_export.csv")
    write_csv(path, rows, PROPERTY_HEADERS)
    logger.info(f"📁 {len(rows)} properties written to: {path}")
    return {"path": path, "rows": len(rows)}


def export_contact_properties(client: HubSpot, data_dir: Optional[str] = None) -> Dict[str, Any]:
    """Contact property definitions: full JSON dump plus a flattened CSV."""
    props = fetch_properties(client, "contacts")

    json_path = _out(data_dir, "contact_properties.json")
    ensure_dir_for_file(json_path)
    with open(json_path, "w", encoding="utf-8") as f:
        json.dump(props, f, indent=2, default=str)
    logger.info(f"📁 Wrote JSON -> {json_path}")

    rows = []
    for p in props:
        options = p.get("options") or []
        rows.append({
            "name": _text(p.get("name")),
            "label": _text(p.get("label")),
            "description": _text(p.get("description")),
            "groupName": _text(_camel(p, "group_name", "groupName")),
            "type": _text(p.get("type")),
            "fieldType": _text(_camel(p, "field_type", "fieldType")),
            "formField": _flag(_camel(p, "form_field", "formField")),
            "hidden": _flag(p.get("hidden")),
            "readOnlyValue": _flag(_camel(p, "read_only_value", "readOnlyValue")),
            "calculated": _flag(p.get("calculated")),
            "externalOptions": _flag(_camel(p, "external_options", "externalOptions")),
            "displayOrder": _text(_camel(p, "display_order", "displayOrder")),
            "hasUniqueValue": _flag(_camel(p, "has_unique_value", "hasUniqueValue")),
            "option_values": "|".join(str(o.get("value")) for o in options if o.get("value")),
            "option_labels": "|".join(str(o.get("label")) for o in options if o.get("label")),
            "referencedObjectType": _text(_camel(p, "referenced_object_type", "referencedObjectType")),
        })
    csv_path = _out(data_dir, "contact_properties.csv")
    write_csv(csv_path, rows, CONTACT_PROPERTY_HEADERS)
    logger.info(f"📁 Wrote CSV -> {csv_path}")
    return {"path": csv_path, "json_path": json_path, "rows": len(rows)}


def export_imports(client: HubSpot, data_dir: Optional[str] = None) -> Dict[str, Any]:
    rows = []
    for imp in fetch_all_imports(client):
        meta = imp.get("metadata") or {}
        file_ids = _camel(meta, "file_ids", "fileIds")
        object_type_ids = _camel(meta, "object_type_ids", "objectTypeIds")
        rows.append({
            "id": _text(imp.get("id")),
            "importName": _text(_camel(imp, "import_name", "importName") or imp.get("name")),
            "state": _text(imp.get("state")),
            "createdAt": _text(_camel(imp, "created_at", "createdAt")),
            "updatedAt": _text(_camel(imp, "updated_at", "updatedAt")),
            "startedAt": _text(_camel(imp, "started_at", "startedAt")),
            "completedAt": _text(_camel(imp, "completed_at", "completedAt")),
            "numRows": _text(_camel(meta, "num_rows", "numRows")),
            "numSucceeded": _text(_camel(meta, "num_succeeded", "numSucceeded")),
            "numFailed": _text(_camel(meta, "num_failed", "numFailed")),
            "fileIds": "|".join(str(i) for i in file_ids) if isinstance(file_ids, list) else "",
            "objectTypeIds": "|".join(str(i) for i in object_type_ids) if isinstance(object_type_ids, list) else "",
            "metadata_json": json.dumps(meta, default=str),
        })
    path = _out(data_dir, "imports_export.csv")
    write_csv(path, rows, IMPORT_HEADERS)
    logger.info(f"📁 {len(rows)} imports written to: {path}")
    return {"path": path, "rows": len(rows)}


# --- Import history ---

def load_import_memberships(imports_dir: Optional[str] = None) -> Dict[str, List[str]]:
    """
    Maps lower-cased e-mail -> names of the import files (file stem) it
    appears in, in file-name order.
    """
    imports_dir = imports_dir or config.IMPORTS_DIR
    memberships: Dict[str, List[str]] = {}
    if not os.path.isdir(imports_dir):
        logger.info(f"ℹ️ No {imports_dir}/ folder found")
        return memberships

    for file_path in sorted(glob.glob(os.path.join(imports_dir, "*.csv"))):
        tag = os.path.splitext(os.path.basename(file_path))[0]
        logger.info(f"  → Processing {os.path.basename(file_path)}")
        for row in read_csv(file_path):
            email = (row.get("email") or row.get("Email") or row.get("EMAIL") or "").strip().lower()
            if not email:
                continue
            tags = memberships.setdefault(email, [])
            if tag not in tags:
                tags.append(tag)

    logger.info(f"✅ Built import tags for {len(memberships)} emails")
    return memberships


def export_contacts_with_import_history(client: HubSpot, data_dir: Optional[str] = None, imports_dir: Optional[str] = None) -> Dict[str, Any]:
    memberships = load_import_memberships(imports_dir)
    contacts = fetch_all_records(client, "contacts", CONTACT_FIELDS)
    rows = []
    for c in contacts:
        props = c["properties"]
        email = _text(props.get("email")).lower()
        rows.append({
            "id": c["id"],
            "email": email,
            "firstname": _text(props.get("firstname")),
            "lastname": _text(props.get("lastname")),
            "phone": _text(props.get("phone")),
            "import_segments": "|".join(memberships.get(email, [])),
        })
    path = _out(data_dir, "contacts_with_import_history.csv")
    write_csv(path, rows, ["id"] + CONTACT_FIELDS + ["import_segments"])
    logger.info(f"📁 Wrote: {path}")
    return {"path": path, "rows": len(rows)}


EXPORTERS: Dict[str, Callable[..., Dict[str, Any]]] = {
    "contacts": export_contacts,
    "companies": export_companies,
    "deals": export_deals,
    "properties": export_properties,
    "contact-properties": export_contact_properties,
    "imports": export_imports,
    "contacts-with-import-history": export_contacts_with_import_history,
}


def run_export(name: str, client: HubSpot, data_dir: Optional[str] = None) -> Dict[str, Any]:
    """Runs a named exporter. Unknown names raise KeyError."""
    if name not in EXPORTERS:
        raise KeyError(f"Unknown export '{name}'. Available: {', '.join(sorted(EXPORTERS))}")
    return EXPORTERS[name](client, data_dir=data_dir)
