# services/property_sync.py

import asyncio
import functools
import os
from typing import Callable, List, Optional, Tuple

from hubspot_client.objects_client import update_record
from sync.audit_sink import append_audit_records
from sync.checkpoint import load_checkpoint, save_checkpoint
from sync.dispatcher import UpdateCallable, apply_wave
from sync.errors import SyncAbortedError, SyncConfigurationError
from sync.models import (
    AuditRecord, OutcomeStatus, PendingUpdate, ProgressEvent, PropertyMapping,
    RunSummary, SyncErrorRecord, SyncRequest
)
from sync.record_mapper import map_row, resolve_mapping
from utils.logger import get_logger
from warehouse.exceptions import PageFetchError
from warehouse.paginator import QueryPaginator

logger = get_logger("property_sync")

ProgressObserver = Callable[[ProgressEvent], None]


def log_progress(event: ProgressEvent) -> None:
    """Default observer: one log line per finished wave."""
    logger.info(
        f"✅ Wave {event.page}.{event.wave} done ({event.wave_size} items): attempted={event.attempted}, "
        f"updated={event.updated}, skipped={event.skipped}, errors={event.errors}, fetched={event.fetched}"
    )


def _read_query(query: str) -> str:
    query = query.strip()
    if not query.endswith(".sql"):
        return query
    path = os.path.abspath(query)
    try:
        with open(path, "r", encoding="utf-8") as f:
            return f.read()
    except OSError as e:
        raise SyncConfigurationError(f"Could not read query file {path}: {e}") from e


def validate_request(request: SyncRequest, hubspot_client, warehouse) -> Tuple[PropertyMapping, str]:
    """
    Checks everything a run needs before any remote call is made.

    Returns:
        (mapping, query_text)

    Raises:
        SyncConfigurationError: naming the first missing or invalid setting.
    """
    if not request.object_type:
        raise SyncConfigurationError("Missing required arg: object_type")
    if not request.query or not request.query.strip():
        raise SyncConfigurationError("Missing required arg: query")
    if not request.id_column:
        raise SyncConfigurationError("Missing required arg: id_column")
    if hubspot_client is None:
        raise SyncConfigurationError("Missing required arg: hubspot_client")
    if warehouse is None:
        raise SyncConfigurationError("Missing required arg: warehouse")
    if request.match_key_type != "id":
        raise SyncConfigurationError("Only match_key_type='id' is supported: records are updated by their HubSpot id.")
    for name in ("page_size", "wave_size", "concurrency"):
        if getattr(request, name) < 1:
            raise SyncConfigurationError(f"{name} must be a positive integer")
    if request.update_timeout is not None and request.update_timeout <= 0:
        raise SyncConfigurationError("update_timeout must be positive (or None to disable)")

    mapping = resolve_mapping(request)
    return mapping, _read_query(request.query)


async def sync_properties_from_warehouse(
    request: SyncRequest,
    hubspot_client,
    warehouse,
    observer: Optional[ProgressObserver] = None,
    apply_update: Optional[UpdateCallable] = None,
) -> RunSummary:
    """
    Pages through a warehouse query and writes the mapped properties onto
    HubSpot records, one wave at a time.

    Every id that reaches a terminal outcome (blank-only, updated, failed or
    dry-run) is added to the checkpoint, so a rerun never attempts it again.
    Checkpoint and audit are flushed after every wave.

    Raises:
        SyncConfigurationError: before any remote call, on a bad request.
        QuerySubmissionError: when the warehouse rejects the query.
        SyncAbortedError: when a page cannot be fetched; carries the partial summary.
    """
    mapping, query = validate_request(request, hubspot_client, warehouse)
    observer = observer or log_progress
    if apply_update is None:
        apply_update = functools.partial(
            update_record, hubspot_client, request.object_type, request_timeout=request.update_timeout
        )

    processed = load_checkpoint(request.checkpoint_path)
    seen_this_run = set()
    summary = RunSummary(
        checkpoint_path=request.checkpoint_path,
        audit_path=request.audit_path,
        note="Executed updates." if request.apply else "Dry run only.",
    )

    logger.info(f"🚀 Starting {request.object_type} property sync ({'apply' if request.apply else 'dry run'})")
    logger.info(f"📌 checkpoint: {request.checkpoint_path or '(none)'}")
    logger.info(f"📄 audit: {request.audit_path or '(none)'}")

    loop = asyncio.get_running_loop()
    paginator = QueryPaginator(warehouse)
    job = await loop.run_in_executor(None, paginator.open_query, query)

    page_token = None
    page_number = 0
    while True:
        try:
            rows, next_token = await loop.run_in_executor(
                None, functools.partial(paginator.next_page, job, page_token, request.page_size)
            )
        except PageFetchError as e:
            save_checkpoint(request.checkpoint_path, processed)
            logger.error(f"❌ Page fetch failed after {summary.fetched} rows; run is partially complete: {e}")
            raise SyncAbortedError(
                f"Sync aborted: could not fetch page {page_number + 1} ({e}). "
                f"Progress up to the last completed wave is saved.",
                summary=summary,
                original_exception=e,
            ) from e

        page_number += 1
        summary.fetched += len(rows)
        if not rows:
            break

        pending: List[PendingUpdate] = []
        unsaved_discards = False
        for row in rows:
            update = map_row(row, request.id_column, mapping, request.drop_blanks)
            if update is None:
                summary.invalid += 1
                continue
            identifier = update.identifier
            if identifier in seen_this_run or (request.skip_already_processed and identifier in processed):
                summary.skipped += 1
                continue
            seen_this_run.add(identifier)

            if not update.properties:
                # Blank-only rows are terminal too, or they would come back on every rerun.
                summary.skipped += 1
                summary.discarded += 1
                processed.add(identifier)
                unsaved_discards = True
                continue
            pending.append(update)

        for wave_number, start in enumerate(range(0, len(pending), request.wave_size), start=1):
            wave = pending[start:start + request.wave_size]
            outcomes = await apply_wave(
                wave,
                request.concurrency,
                apply_update,
                dry_run=not request.apply,
                timeout=request.update_timeout,
            )

            summary.attempted += len(wave)
            for outcome in outcomes:
                processed.add(outcome.identifier)
                if outcome.status == OutcomeStatus.UPDATED:
                    summary.updated += 1
                elif outcome.status == OutcomeStatus.ERROR:
                    summary.errors.append(SyncErrorRecord(
                        match_val=outcome.identifier, error=outcome.error, properties=outcome.properties
                    ))

            append_audit_records(request.audit_path, [AuditRecord.from_outcome(o) for o in outcomes])
            save_checkpoint(request.checkpoint_path, processed)
            unsaved_discards = False

            observer(ProgressEvent(
                page=page_number,
                wave=wave_number,
                wave_size=len(wave),
                fetched=summary.fetched,
                attempted=summary.attempted,
                updated=summary.updated,
                skipped=summary.skipped,
                errors=len(summary.errors),
            ))

        if unsaved_discards:
            save_checkpoint(request.checkpoint_path, processed)

        if not next_token:
            break
        page_token = next_token

    logger.info(
        f"🏁 Sync finished: fetched={summary.fetched}, attempted={summary.attempted}, updated={summary.updated}, "
        f"skipped={summary.skipped} (discarded={summary.discarded}), invalid={summary.invalid}, errors={len(summary.errors)}"
    )
    return summary
