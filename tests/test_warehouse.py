# tests/test_warehouse.py

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from google.api_core.exceptions import BadRequest, ServiceUnavailable
from snowflake.connector.errors import ProgrammingError

import warehouse.paginator as paginator_module
from utils import config
from utils.config import ConfigurationError
from warehouse.bigquery_client import BigQueryWarehouse
from warehouse.exceptions import PageFetchError, QuerySubmissionError, WarehouseError
from warehouse.paginator import QueryPaginator, get_warehouse
from warehouse.snowflake_client import SnowflakeWarehouse


# --- BigQuery ---

def test_bigquery_submit_waits_for_job():
    bq = MagicMock()
    job = bq.query.return_value
    warehouse = BigQueryWarehouse(project_id="proj", location="EU", client=bq)

    assert warehouse.submit("SELECT 1") is job
    bq.query.assert_called_once_with("SELECT 1", location="EU")
    job.result.assert_called_once()

def test_bigquery_rejected_query():
    bq = MagicMock()
    bq.query.return_value.result.side_effect = BadRequest("Syntax error at [1:8]")
    with pytest.raises(QuerySubmissionError):
        BigQueryWarehouse(project_id="proj", client=bq).submit("SELEC 1")

def test_bigquery_fetch_page_returns_rows_and_next_token():
    bq = MagicMock()
    bq.list_rows.return_value = SimpleNamespace(
        pages=iter([[{"id": 1, "country_normalized": "US"}, {"id": 2, "country_normalized": None}]]),
        next_page_token="tok-2",
    )
    job = SimpleNamespace(destination="proj._anon.table")
    warehouse = BigQueryWarehouse(project_id="proj", client=bq)

    rows, token = warehouse.fetch_page(job, "tok-1", 2)

    assert rows == [{"id": 1, "country_normalized": "US"}, {"id": 2, "country_normalized": None}]
    assert token == "tok-2"
    bq.list_rows.assert_called_once_with("proj._anon.table", page_size=2, page_token="tok-1")

def test_bigquery_fetch_page_when_exhausted():
    bq = MagicMock()
    bq.list_rows.return_value = SimpleNamespace(pages=iter([]), next_page_token=None)
    rows, token = BigQueryWarehouse(project_id="proj", client=bq).fetch_page(SimpleNamespace(destination="t"), None, 10)
    assert rows == []
    assert token is None

def test_bigquery_fetch_failure():
    bq = MagicMock()
    bq.list_rows.side_effect = ServiceUnavailable("backend error")
    with pytest.raises(PageFetchError):
        BigQueryWarehouse(project_id="proj", client=bq).fetch_page(SimpleNamespace(destination="t"), None, 10)

def test_bigquery_insert_rows_in_chunks():
    bq = MagicMock()
    bq.insert_rows_json.return_value = []
    rows = [{"contact_id": str(i)} for i in range(1200)]

    assert BigQueryWarehouse(project_id="proj", client=bq).insert_rows("proj.ds.lists", rows) == 1200
    assert [len(c[0][1]) for c in bq.insert_rows_json.call_args_list] == [500, 500, 200]

def test_bigquery_insert_errors_raise():
    bq = MagicMock()
    bq.insert_rows_json.return_value = [{"index": 0, "errors": ["invalid"]}]
    with pytest.raises(WarehouseError):
        BigQueryWarehouse(project_id="proj", client=bq).insert_rows("proj.ds.lists", [{"contact_id": "1"}])


# --- Snowflake ---

def _snowflake(pages):
    connection = MagicMock()
    cursor = connection.cursor.return_value
    cursor.fetchmany.side_effect = pages
    return SnowflakeWarehouse(connection=connection), cursor

def test_snowflake_pages_by_offset_and_lowercases_columns():
    warehouse, cursor = _snowflake([
        [{"ID": 1, "COUNTRY_NORMALIZED": "US"}, {"ID": 2, "COUNTRY_NORMALIZED": "MX"}],
        [{"ID": 3, "COUNTRY_NORMALIZED": "CA"}],
    ])
    job = warehouse.submit("select id, country_normalized from contacts")

    rows, token = warehouse.fetch_page(job, None, 2)
    assert rows == [{"id": 1, "country_normalized": "US"}, {"id": 2, "country_normalized": "MX"}]
    assert token == "2"

    rows, token = warehouse.fetch_page(job, token, 2)
    assert rows == [{"id": 3, "country_normalized": "CA"}]
    assert token is None
    cursor.close.assert_called_once()

def test_snowflake_out_of_order_token():
    warehouse, _ = _snowflake([[{"ID": 1}]])
    job = warehouse.submit("select 1")
    with pytest.raises(PageFetchError):
        warehouse.fetch_page(job, "500", 1)

def test_snowflake_rejected_query():
    warehouse, cursor = _snowflake([])
    cursor.execute.side_effect = ProgrammingError("SQL compilation error")
    with pytest.raises(QuerySubmissionError):
        warehouse.submit("selec 1")

def test_snowflake_insert_rows_uses_executemany():
    warehouse, cursor = _snowflake([])
    rows = [{"contact_id": "1", "email": "a@example.com"}, {"contact_id": "2", "email": None}]

    assert warehouse.insert_rows("HUBSPOT.LISTS", rows) == 2
    sql, params = cursor.executemany.call_args[0]
    assert sql == "INSERT INTO HUBSPOT.LISTS (CONTACT_ID, EMAIL) VALUES (%s, %s)"
    assert params == [("1", "a@example.com"), ("2", None)]


# --- Paginator ---

def test_paginator_wraps_backend_failures():
    backend = MagicMock()
    backend.fetch_page.side_effect = ConnectionResetError("reset")
    with pytest.raises(PageFetchError):
        QueryPaginator(backend).next_page("job", None, 100)

def test_paginator_turns_warehouse_errors_on_submit_into_submission_errors():
    backend = MagicMock()
    backend.submit.side_effect = WarehouseError("permission denied")
    with pytest.raises(QuerySubmissionError):
        QueryPaginator(backend).open_query("SELECT 1")

def test_paginator_passes_pages_through():
    backend = MagicMock()
    backend.fetch_page.return_value = ([{"id": "2"}, {"id": "1"}], "next")
    assert QueryPaginator(backend).next_page("job", "tok", 2) == ([{"id": "2"}, {"id": "1"}], "next")

def test_get_warehouse_unknown_backend(mocker):
    mocker.patch.object(paginator_module, "_warehouse", None)
    mocker.patch.object(config, "WAREHOUSE_BACKEND", "oracle")
    with pytest.raises(ConfigurationError):
        get_warehouse()

def test_get_warehouse_snowflake(mocker):
    mocker.patch.object(paginator_module, "_warehouse", None)
    mocker.patch.object(config, "WAREHOUSE_BACKEND", "snowflake")
    warehouse = get_warehouse()
    assert isinstance(warehouse, SnowflakeWarehouse)
    assert get_warehouse() is warehouse
