# services/diagnostics.py

from typing import Any, Dict, List, Optional

from hubspot_client.exceptions import HubSpotError, HubSpotNotFoundError, error_detail
from hubspot_client.objects_client import batch_read_contacts, get_record
from utils.config import describe_environment
from utils.logger import get_logger

logger = get_logger("diagnostics")

PROBE_PROPERTIES = ["email", "firstname", "lastname"]


def check_env() -> Dict[str, str]:
    report = describe_environment()
    for name, state in report.items():
        logger.info(f"{name}: {state}")
    return report


def probe_record(client, object_type: str, record_id: str, properties: Optional[List[str]] = None) -> Dict[str, Any]:
    """
    Looks a record up by id twice: with a single read and with a batch read.

    Used to explain ids the sync reports as missing. Contacts are the only
    object type probed through the batch endpoint.
    """
    properties = properties or PROBE_PROPERTIES
    report: Dict[str, Any] = {"object_type": object_type, "id": str(record_id)}

    try:
        record = get_record(client, object_type, str(record_id), properties)
        report["get_by_id"] = {"found": True, "id": record["id"], "properties": record["properties"]}
        logger.info(f"✅ get_by_id FOUND {object_type}/{record_id}")
    except HubSpotNotFoundError as e:
        report["get_by_id"] = {"found": False, "status": 404, "error": error_detail(e)}
        logger.warning(f"❌ get_by_id did not find {object_type}/{record_id}")
    except HubSpotError as e:
        report["get_by_id"] = {"found": False, "status": e.status_code, "error": error_detail(e)}
        logger.error(f"❌ get_by_id FAILED for {object_type}/{record_id}: {e}")

    if object_type != "contacts":
        report["batch_read"] = {"skipped": True}
        return report

    try:
        results = batch_read_contacts(client, [str(record_id)], properties)
        if results:
            report["batch_read"] = {"found": True, "id": results[0]["id"], "properties": results[0]["properties"]}
            logger.info(f"✅ batch/read FOUND {record_id}")
        else:
            report["batch_read"] = {"found": False}
            logger.warning(f"❌ batch/read DID NOT FIND {record_id}")
    except HubSpotError as e:
        report["batch_read"] = {"found": False, "status": e.status_code, "error": error_detail(e)}
        logger.error(f"❌ batch/read FAILED for {record_id}: {e}")
    return report
