# tests/test_property_sync.py

import asyncio
import csv
import json
from unittest.mock import MagicMock

import pytest

from services.property_sync import sync_properties_from_warehouse
from sync.checkpoint import load_checkpoint
from sync.errors import SyncAbortedError, SyncConfigurationError
from sync.models import SyncRequest
from warehouse.exceptions import QuerySubmissionError

pytestmark = pytest.mark.asyncio

COUNTRY_STATE = {"country": "country_normalized", "state": "state_normalized"}


def _request(checkpoint_path, audit_path=None, **overrides):
    fields = dict(
        object_type="contacts",
        query="SELECT id, country_normalized, state_normalized FROM contacts",
        property_map=COUNTRY_STATE,
        id_column="id",
        apply=True,
        checkpoint_path=checkpoint_path,
        audit_path=audit_path,
        update_timeout=5,
    )
    fields.update(overrides)
    return SyncRequest(**fields)


def _rows(start, count):
    return [{"id": str(i), "country_normalized": "US", "state_normalized": "CA"} for i in range(start, start + count)]


def _audit_rows(path):
    with open(path, encoding="utf-8") as f:
        return list(csv.DictReader(f))


# --- Pagination ---

async def test_pagination_stops_on_empty_page(make_warehouse, checkpoint_path):
    warehouse = make_warehouse([_rows(1, 5000), _rows(5001, 5000), []])
    events = []

    summary = await sync_properties_from_warehouse(
        _request(checkpoint_path, apply=False), MagicMock(), warehouse, observer=events.append,
    )

    assert summary.fetched == 10000
    assert summary.attempted == 10000
    assert summary.updated == 0
    assert summary.note == "Dry run only."
    assert [call[1] for call in warehouse.fetch_calls] == [None, "1", "2"]
    assert all(call[2] == 5000 for call in warehouse.fetch_calls)
    assert len(events) == 20  # 10 waves of 500 per page
    assert len(load_checkpoint(checkpoint_path)) == 10000

async def test_last_page_without_token_ends_the_run(make_warehouse, make_updater, checkpoint_path):
    warehouse = make_warehouse([_rows(1, 3)])
    summary = await sync_properties_from_warehouse(
        _request(checkpoint_path), MagicMock(), warehouse, apply_update=make_updater(),
    )
    assert len(warehouse.fetch_calls) == 1
    assert summary.fetched == 3
    assert summary.updated == 3


# --- Idempotency ---

async def test_second_run_skips_everything_seen(make_warehouse, make_updater, checkpoint_path, audit_path):
    pages = [_rows(1, 4) + [{"id": "5", "country_normalized": None, "state_normalized": " "}]]
    first_updater = make_updater()

    first = await sync_properties_from_warehouse(
        _request(checkpoint_path, audit_path), MagicMock(), make_warehouse(pages), apply_update=first_updater,
    )
    assert first.updated == 4
    assert first.discarded == 1
    assert len(first_updater.calls) == 4

    second_updater = make_updater()
    second = await sync_properties_from_warehouse(
        _request(checkpoint_path, audit_path), MagicMock(), make_warehouse(pages), apply_update=second_updater,
    )
    assert second_updater.calls == []
    assert second.attempted == 0
    assert second.updated == 0
    assert second.skipped == 5
    assert len(_audit_rows(audit_path)) == 4

async def test_skip_already_processed_off_retries_checkpointed_ids(make_warehouse, make_updater, checkpoint_path):
    pages = [_rows(1, 2)]
    await sync_properties_from_warehouse(_request(checkpoint_path), MagicMock(), make_warehouse(pages), apply_update=make_updater())

    updater = make_updater()
    summary = await sync_properties_from_warehouse(
        _request(checkpoint_path, skip_already_processed=False), MagicMock(), make_warehouse(pages), apply_update=updater,
    )
    assert summary.updated == 2
    assert len(updater.calls) == 2

async def test_duplicate_ids_in_one_run_are_attempted_once(make_warehouse, make_updater, checkpoint_path):
    rows = _rows(1, 2) + [{"id": "1", "country_normalized": "MX", "state_normalized": "JAL"}]
    updater = make_updater()

    summary = await sync_properties_from_warehouse(
        _request(checkpoint_path), MagicMock(), make_warehouse([rows[:2], rows[2:]]), apply_update=updater,
    )

    assert [c[0] for c in updater.calls].count("1") == 1
    assert summary.attempted == 2
    assert summary.skipped == 1


# --- Blank handling ---

async def test_blank_only_rows_are_discarded_but_checkpointed(make_warehouse, make_updater, checkpoint_path, audit_path):
    rows = [
        {"id": "10", "country_normalized": None, "state_normalized": None},
        {"id": "11", "country_normalized": "", "state_normalized": "   "},
        {"id": "12", "country_normalized": "US", "state_normalized": ""},
    ]
    updater = make_updater()

    summary = await sync_properties_from_warehouse(
        _request(checkpoint_path, audit_path), MagicMock(), make_warehouse([rows]), apply_update=updater,
    )

    assert updater.calls == [("12", {"country": "US"})]
    assert summary.discarded == 2
    assert summary.skipped == 2
    assert load_checkpoint(checkpoint_path) == {"10", "11", "12"}
    assert [r["matchVal"] for r in _audit_rows(audit_path)] == ["12"]

async def test_page_of_only_blank_rows_still_saves_checkpoint(make_warehouse, make_updater, checkpoint_path):
    rows = [{"id": "20", "country_normalized": None, "state_normalized": None}]
    updater = make_updater()

    await sync_properties_from_warehouse(_request(checkpoint_path), MagicMock(), make_warehouse([rows]), apply_update=updater)

    assert updater.calls == []
    assert load_checkpoint(checkpoint_path) == {"20"}

async def test_rows_without_id_are_counted_invalid(make_warehouse, make_updater, checkpoint_path):
    rows = [
        {"id": None, "country_normalized": "US", "state_normalized": "CA"},
        {"id": "  ", "country_normalized": "US", "state_normalized": "CA"},
        {"id": "30", "country_normalized": "US", "state_normalized": "CA"},
    ]
    summary = await sync_properties_from_warehouse(
        _request(checkpoint_path), MagicMock(), make_warehouse([rows]), apply_update=make_updater(),
    )
    assert summary.invalid == 2
    assert summary.skipped == 0
    assert summary.updated == 1
    assert load_checkpoint(checkpoint_path) == {"30"}


# --- Failures ---

async def test_failed_record_is_isolated_and_checkpointed(make_warehouse, make_updater, checkpoint_path, audit_path):
    updater = make_updater(fail_ids={"3"})

    summary = await sync_properties_from_warehouse(
        _request(checkpoint_path, audit_path, concurrency=2), MagicMock(), make_warehouse([_rows(1, 5)]), apply_update=updater,
    )

    assert summary.attempted == 5
    assert summary.updated == 4
    assert [e.match_val for e in summary.errors] == ["3"]
    assert summary.errors[0].properties == {"country": "US", "state": "CA"}
    assert "3" in load_checkpoint(checkpoint_path)

    audit = {r["matchVal"]: r for r in _audit_rows(audit_path)}
    assert audit["3"]["status"] == "ERROR"
    assert "Property values were not valid" in audit["3"]["error"]
    assert sorted(r["status"] for r in audit.values()) == ["ERROR", "UPDATED", "UPDATED", "UPDATED", "UPDATED"]
    assert json.loads(audit["1"]["properties_json"]) == {"country": "US", "state": "CA"}

async def test_timed_out_update_is_an_error(make_warehouse, checkpoint_path):
    async def update(identifier, properties):
        if identifier == "2":
            await asyncio.sleep(5)

    summary = await sync_properties_from_warehouse(
        _request(checkpoint_path, update_timeout=0.05), MagicMock(), make_warehouse([_rows(1, 3)]), apply_update=update,
    )
    assert summary.updated == 2
    assert [e.match_val for e in summary.errors] == ["2"]

async def test_page_fetch_failure_aborts_with_partial_summary(make_warehouse, make_updater, checkpoint_path, audit_path):
    warehouse = make_warehouse([_rows(1, 3), _rows(4, 3)], fail_on_page=1)

    with pytest.raises(SyncAbortedError) as exc_info:
        await sync_properties_from_warehouse(
            _request(checkpoint_path, audit_path), MagicMock(), warehouse, apply_update=make_updater(),
        )

    summary = exc_info.value.summary
    assert summary.fetched == 3
    assert summary.updated == 3
    assert load_checkpoint(checkpoint_path) == {"1", "2", "3"}
    assert len(_audit_rows(audit_path)) == 3

async def test_rejected_query_propagates(make_warehouse, checkpoint_path):
    with pytest.raises(QuerySubmissionError):
        await sync_properties_from_warehouse(
            _request(checkpoint_path), MagicMock(), make_warehouse([], reject_query=True), apply_update=MagicMock(),
        )


# --- Configuration ---

@pytest.mark.parametrize("overrides", [
    {"object_type": None},
    {"query": "   "},
    {"id_column": ""},
    {"property_map": None},
    {"property_map": "country"},  # column_name missing
    {"match_key_type": "email"},
    {"page_size": 0},
    {"wave_size": -1},
    {"concurrency": 0},
    {"update_timeout": 0},
])
async def test_bad_configuration_fails_before_any_remote_call(make_warehouse, checkpoint_path, overrides):
    warehouse = make_warehouse([_rows(1, 1)])
    with pytest.raises(SyncConfigurationError):
        await sync_properties_from_warehouse(_request(checkpoint_path, **overrides), MagicMock(), warehouse)
    assert warehouse.submitted == []

async def test_missing_clients_are_configuration_errors(make_warehouse, checkpoint_path):
    with pytest.raises(SyncConfigurationError):
        await sync_properties_from_warehouse(_request(checkpoint_path), None, make_warehouse([]))
    with pytest.raises(SyncConfigurationError):
        await sync_properties_from_warehouse(_request(checkpoint_path), MagicMock(), None)

async def test_query_is_read_from_sql_file(make_warehouse, make_updater, checkpoint_path, tmp_path):
    sql_file = tmp_path / "normalized.sql"
    sql_file.write_text("SELECT id, country_normalized FROM t", encoding="utf-8")
    warehouse = make_warehouse([[]])

    await sync_properties_from_warehouse(
        _request(checkpoint_path, query=str(sql_file)), MagicMock(), warehouse, apply_update=make_updater(),
    )
    assert warehouse.submitted == ["SELECT id, country_normalized FROM t"]

async def test_missing_sql_file_is_configuration_error(make_warehouse, checkpoint_path, tmp_path):
    with pytest.raises(SyncConfigurationError):
        await sync_properties_from_warehouse(
            _request(checkpoint_path, query=str(tmp_path / "missing.sql")), MagicMock(), make_warehouse([]),
        )


# --- Default CRM path ---

async def test_default_update_goes_through_update_record(make_warehouse, checkpoint_path, mocker):
    mock_update = mocker.patch("services.property_sync.update_record", return_value={"id": "1"})
    hubspot_client = MagicMock()

    summary = await sync_properties_from_warehouse(
        _request(checkpoint_path, object_type="deals", property_map="dealstage", column_name="stage"),
        hubspot_client,
        make_warehouse([[{"id": "1", "stage": "closedwon"}]]),
    )

    assert summary.updated == 1
    mock_update.assert_called_once_with(hubspot_client, "deals", "1", {"dealstage": "closedwon"}, request_timeout=5)
