# main.py
import os
import asyncio
import functools
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, BackgroundTasks, HTTPException, Response
from pydantic import BaseModel

from utils import config  # loads .env
from utils.config import ConfigurationError, describe_environment
from utils.logger import get_logger

logger = get_logger("main_api")

from hubspot_client.client import get_hubspot_client
from hubspot_client.exceptions import (
    HubSpotError, HubSpotAuthenticationError, HubSpotRateLimitError,
    HubSpotNotFoundError, HubSpotBadRequestError
)
from services.bulk_actions import ACTIONS, run_action
from services.delete_candidates import DEFAULT_LIST_NAME, export_delete_candidates
from services.diagnostics import probe_record
from services.exporters import EXPORTERS, run_export
from services.property_sync import sync_properties_from_warehouse, validate_request
from sync.errors import SyncAbortedError, SyncConfigurationError
from sync.models import SyncRequest
from warehouse.exceptions import QuerySubmissionError, WarehouseError
from warehouse.paginator import get_warehouse


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Application startup...")
    logger.info(f"Warehouse backend: {config.WAREHOUSE_BACKEND}; HubSpot token {'set' if config.HUBSPOT_ACCESS_TOKEN else 'MISSING'}.")
    yield
    # Shutdown
    logger.info("Application shutdown.")

app = FastAPI(lifespan=lifespan)

# --- Pydantic Models ---
class SyncPropertiesRequest(SyncRequest):
    background: bool = False

class BulkActionRequest(BaseModel):
    apply: bool = False
    limit: Optional[int] = None

class DeleteCandidatesRequest(BaseModel):
    list_name: str = DEFAULT_LIST_NAME
    limit: Optional[int] = None
    enrich: bool = False


# --- Helpers ---

def _hubspot_http_error(e: HubSpotError, context: str) -> HTTPException:
    if isinstance(e, HubSpotAuthenticationError):
        logger.error(f"🔒 HubSpot Auth Error during {context}: {e}")
        return HTTPException(status_code=503, detail="Service Unavailable: HubSpot Authentication Failed.")
    if isinstance(e, HubSpotRateLimitError):
        logger.warning(f"🚦 HubSpot Rate Limit hit during {context}: {e}")
        return HTTPException(status_code=429, detail="Too Many Requests: HubSpot Rate Limit Exceeded.")
    if isinstance(e, HubSpotNotFoundError):
        logger.warning(f"HubSpot resource not found during {context}: {e}")
        return HTTPException(status_code=404, detail=f"Not Found: {e}")
    if isinstance(e, HubSpotBadRequestError):
        logger.error(f"📉 HubSpot Bad Request during {context}: {e}")
        return HTTPException(status_code=400, detail="Bad Request: HubSpot rejected the request.")
    logger.error(f"💥 HubSpot API Error during {context}: {e}")
    return HTTPException(status_code=502, detail="Bad Gateway: HubSpot API Error.")


def _under_data_dir(value: str, field: str) -> str:
    """Resolves a caller-supplied file name inside DATA_DIR; anything reaching outside is a 400."""
    if os.path.isabs(value) or ".." in Path(value).parts:
        raise HTTPException(status_code=400, detail=f"{field} must be a relative path inside the data directory")
    base = os.path.realpath(config.DATA_DIR)
    path = os.path.realpath(os.path.join(base, value))
    if os.path.commonpath([base, path]) != base:
        raise HTTPException(status_code=400, detail=f"{field} must be a relative path inside the data directory")
    return path


def _sync_request_from_body(body: SyncPropertiesRequest) -> SyncRequest:
    """
    HTTP callers send SQL text only, and their checkpoint / audit files
    live under DATA_DIR. Reading .sql files and free file paths are CLI-only.
    """
    fields = body.model_dump(exclude={"background"})
    if body.query and body.query.strip().lower().endswith(".sql"):
        raise HTTPException(status_code=400, detail="query must be SQL text; .sql files cannot be read over HTTP")
    if "checkpoint_path" in body.model_fields_set and body.checkpoint_path:
        fields["checkpoint_path"] = _under_data_dir(body.checkpoint_path, "checkpoint_path")
    if body.audit_path:
        fields["audit_path"] = _under_data_dir(body.audit_path, "audit_path")
    return SyncRequest(**fields)


def _clients(need_hubspot: bool = True):
    """Returns (hubspot_client, warehouse) or raises the matching HTTPException."""
    try:
        hubspot_client = get_hubspot_client() if need_hubspot else None
    except HubSpotAuthenticationError as e:
        raise _hubspot_http_error(e, "client initialization")
    try:
        warehouse = get_warehouse()
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return hubspot_client, warehouse


async def _run_sync_in_background(request: SyncRequest, hubspot_client, warehouse):
    try:
        summary = await sync_properties_from_warehouse(request, hubspot_client, warehouse)
        logger.info(f"✅ Background sync finished: {summary.model_dump(exclude={'errors'})}")
    except SyncAbortedError as e:
        logger.error(f"💥 Background sync aborted: {e}")
    except (WarehouseError, HubSpotError) as e:
        logger.error(f"💥 Background sync failed: {e}", exc_info=True)


# --- API Endpoints ---

@app.get("/")
async def read_root():
    return {"message": "HubSpot warehouse sync API is running!"}

@app.get("/env")
async def read_env():
    """Which settings are present; secrets are masked."""
    return describe_environment()

@app.post("/sync-properties")
async def sync_properties_endpoint(body: SyncPropertiesRequest, background_tasks: BackgroundTasks, response: Response):
    """
    Pushes warehouse query results onto HubSpot record properties.

    Dry run unless `apply` is true. With `background` the run is scheduled
    and 202 is returned right after the request is validated.
    """
    request = _sync_request_from_body(body)
    logger.info(f"🚀 Received sync request for {request.object_type} (apply={request.apply}, background={body.background})")
    hubspot_client, warehouse = _clients()

    try:
        validate_request(request, hubspot_client, warehouse)
    except SyncConfigurationError as e:
        logger.warning(f"Rejected sync request: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    if body.background:
        background_tasks.add_task(_run_sync_in_background, request, hubspot_client, warehouse)
        response.status_code = 202
        return {"message": f"Scheduled {request.object_type} property sync in the background.", "apply": request.apply}

    try:
        return await sync_properties_from_warehouse(request, hubspot_client, warehouse)
    except SyncConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except QuerySubmissionError as e:
        logger.error(f"💥 Warehouse rejected the query: {e}")
        raise HTTPException(status_code=502, detail=f"Bad Gateway: warehouse rejected the query: {e}")
    except SyncAbortedError as e:
        logger.error(f"💥 Sync aborted: {e}")
        partial = e.summary.model_dump() if e.summary is not None else None
        raise HTTPException(status_code=502, detail={"message": str(e), "summary": partial})
    except HubSpotError as e:
        raise _hubspot_http_error(e, "property sync")

@app.post("/exports/{name}")
async def export_endpoint(name: str):
    """Writes one of the CSV exports under DATA_DIR."""
    if name not in EXPORTERS:
        raise HTTPException(status_code=404, detail=f"Unknown export '{name}'. Available: {', '.join(sorted(EXPORTERS))}")
    try:
        hubspot_client = get_hubspot_client()
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(None, functools.partial(run_export, name, hubspot_client))
    except HubSpotError as e:
        raise _hubspot_http_error(e, f"export '{name}'")
    except OSError as e:
        logger.error(f"💥 Could not write export '{name}': {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Internal Server Error: could not write export: {e}")
    logger.info(f"✅ Export '{name}' done: {result}")
    return result

@app.post("/bulk/{action}")
async def bulk_action_endpoint(action: str, body: Optional[BulkActionRequest] = None):
    """Runs a merge / update / delete / all action fed from the warehouse control tables."""
    if action not in ACTIONS:
        raise HTTPException(status_code=404, detail=f"Unknown bulk action '{action}'. Available: {', '.join(ACTIONS)}")
    body = body or BulkActionRequest()
    hubspot_client, warehouse = _clients()
    try:
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(
            None, functools.partial(run_action, action, hubspot_client, warehouse, apply=body.apply, limit=body.limit)
        )
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except WarehouseError as e:
        logger.error(f"💥 Warehouse error during bulk {action}: {e}")
        raise HTTPException(status_code=502, detail=f"Bad Gateway: warehouse error: {e}")
    return {"action": action, "result": result}

@app.post("/delete-candidates")
async def delete_candidates_endpoint(body: Optional[DeleteCandidatesRequest] = None):
    """Copies BQ_DELETE_TABLE contact ids into the contact-list table."""
    body = body or DeleteCandidatesRequest()
    hubspot_client, warehouse = _clients(need_hubspot=body.enrich)
    try:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(
            export_delete_candidates, warehouse, hubspot_client,
            list_name=body.list_name, limit=body.limit, enrich=body.enrich,
        ))
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except WarehouseError as e:
        logger.error(f"💥 Warehouse error while building delete list: {e}")
        raise HTTPException(status_code=502, detail=f"Bad Gateway: warehouse error: {e}")

@app.get("/probe/{object_type}/{record_id}")
async def probe_endpoint(object_type: str, record_id: str):
    """Reads a record by id and via batch read to explain 'missing id' reports."""
    try:
        hubspot_client = get_hubspot_client()
    except HubSpotAuthenticationError as e:
        raise _hubspot_http_error(e, "client initialization")
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(probe_record, hubspot_client, object_type, record_id))


# --- Run with Uvicorn ---
if __name__ == "__main__":
    import uvicorn
    host = os.getenv("HOST", "127.0.0.1")
    port = int(os.getenv("PORT", "8000"))
    reload = os.getenv("RELOAD", "true").lower() == "true"

    logger.info(f"Starting Uvicorn server on {host}:{port} with reload={reload}")
    uvicorn.run("main:app", host=host, port=port, reload=reload)
