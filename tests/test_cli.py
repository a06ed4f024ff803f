# tests/test_cli.py

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

import cli
import sync_normalized_contacts
from hubspot_client.exceptions import HubSpotServerError
from sync.errors import SyncAbortedError
from sync.models import RunSummary
from utils import config


@pytest.fixture
def clients(mocker):
    hubspot_client = mocker.patch("cli.get_hubspot_client", return_value=MagicMock()).return_value
    warehouse = mocker.patch("cli.get_warehouse", return_value=MagicMock()).return_value
    return hubspot_client, warehouse


def test_sync_properties_builds_request_from_flags(mocker, clients, capsys):
    mock_sync = mocker.patch("cli.sync_properties_from_warehouse", new_callable=AsyncMock,
                             return_value=RunSummary(fetched=2, updated=2, note="Executed updates."))

    code = cli.main([
        "sync-properties", "--object", "contacts", "--query", "SELECT 1", "--id-column", "id",
        "--map", "country=country_normalized", "--map", "state = state_normalized",
        "--wave-size", "50", "--concurrency", "5", "--keep-blanks", "--apply",
    ])

    assert code == 0
    request, hubspot_client, warehouse = mock_sync.await_args[0]
    assert request.property_map == {"country": "country_normalized", "state": "state_normalized"}
    assert request.wave_size == 50
    assert request.concurrency == 5
    assert request.drop_blanks is False
    assert request.apply is True
    assert request.skip_already_processed is True
    assert (hubspot_client, warehouse) == clients
    assert json.loads(capsys.readouterr().out)["updated"] == 2

def test_sync_properties_single_property(mocker, clients):
    mock_sync = mocker.patch("cli.sync_properties_from_warehouse", new_callable=AsyncMock, return_value=RunSummary())

    cli.main(["sync-properties", "--object", "deals", "--query", "q.sql", "--id-column", "deal_id",
              "--property", "dealstage", "--column", "stage"])

    request = mock_sync.await_args[0][0]
    assert request.property_map == "dealstage"
    assert request.column_name == "stage"
    assert request.apply is False

def test_bad_map_pair_is_a_configuration_error(mocker, clients):
    mock_sync = mocker.patch("cli.sync_properties_from_warehouse", new_callable=AsyncMock)
    code = cli.main(["sync-properties", "--object", "contacts", "--query", "q", "--id-column", "id", "--map", "country"])
    assert code == 2
    mock_sync.assert_not_awaited()

@pytest.mark.parametrize("value, expected", [("off", None), ("None", None), ("12.5", 12.5)])
def test_timeout_flag_can_be_turned_off(mocker, clients, value, expected):
    mock_sync = mocker.patch("cli.sync_properties_from_warehouse", new_callable=AsyncMock, return_value=RunSummary())

    cli.main(["sync-properties", "--object", "contacts", "--query", "q", "--id-column", "id",
              "--property", "country", "--column", "c", "--timeout", value])

    assert mock_sync.await_args[0][0].update_timeout == expected

def test_timeout_flag_rejects_garbage(clients):
    with pytest.raises(SystemExit):
        cli.main(["sync-properties", "--object", "contacts", "--query", "q", "--id-column", "id",
                  "--property", "country", "--column", "c", "--timeout", "soon"])

def test_map_and_property_are_mutually_exclusive(mocker, clients):
    mock_sync = mocker.patch("cli.sync_properties_from_warehouse", new_callable=AsyncMock)
    with pytest.raises(SystemExit):
        cli.main(["sync-properties", "--object", "contacts", "--query", "q", "--id-column", "id",
                  "--property", "country", "--map", "state=state_normalized"])
    mock_sync.assert_not_awaited()

def test_map_with_column_is_a_configuration_error(mocker, clients):
    mock_sync = mocker.patch("cli.sync_properties_from_warehouse", new_callable=AsyncMock)
    code = cli.main(["sync-properties", "--object", "contacts", "--query", "q", "--id-column", "id",
                     "--map", "state=state_normalized", "--column", "country_normalized"])
    assert code == 2
    mock_sync.assert_not_awaited()

def test_aborted_sync_prints_partial_summary(mocker, clients, capsys):
    mocker.patch("cli.sync_properties_from_warehouse", new_callable=AsyncMock,
                 side_effect=SyncAbortedError("page 3 failed", summary=RunSummary(fetched=10000, updated=9998)))

    code = cli.main(["sync-properties", "--object", "contacts", "--query", "q", "--id-column", "id", "--property", "country", "--column", "c"])

    assert code == 1
    assert json.loads(capsys.readouterr().out)["fetched"] == 10000


# --- Other commands ---

def test_export_command(mocker, clients, tmp_path):
    mock_export = mocker.patch("cli.run_export", return_value={"path": "x.csv", "rows": 0})
    assert cli.main(["export", "companies", "--data-dir", str(tmp_path)]) == 0
    mock_export.assert_called_once_with("companies", clients[0], data_dir=str(tmp_path))

def test_export_rejects_unknown_name(clients):
    with pytest.raises(SystemExit):
        cli.main(["export", "tickets"])

def test_bulk_command_failure_exit_code(mocker, clients):
    mocker.patch("cli.run_action", side_effect=HubSpotServerError("down"))
    assert cli.main(["bulk", "all", "--apply", "--limit", "5"]) == 1

def test_bulk_command_arguments(mocker, clients):
    mock_action = mocker.patch("cli.run_action", return_value=[])
    cli.main(["bulk", "delete", "--limit", "5"])
    mock_action.assert_called_once_with("delete", clients[0], clients[1], apply=False, limit=5)

def test_delete_candidates_without_enrich_skips_hubspot(mocker):
    mock_get_client = mocker.patch("cli.get_hubspot_client")
    warehouse = mocker.patch("cli.get_warehouse").return_value
    mock_export = mocker.patch("cli.export_delete_candidates", return_value={"rows": 0})

    assert cli.main(["delete-candidates", "--list-name", "Delete_Candidates"]) == 0
    mock_get_client.assert_not_called()
    assert mock_export.call_args[0] == (warehouse, None)
    assert mock_export.call_args.kwargs["list_name"] == "Delete_Candidates"

def test_probe_command_checks_every_id(mocker, clients, capsys):
    mocker.patch("cli.probe_record", side_effect=lambda client, object_type, record_id: {"id": record_id})
    assert cli.main(["probe", "contacts", "1", "2"]) == 0
    assert json.loads(capsys.readouterr().out) == [{"id": "1"}, {"id": "2"}]


# --- Normalized contacts job ---

def test_normalized_contacts_request(mocker):
    warehouse = mocker.patch("sync_normalized_contacts.get_warehouse").return_value
    warehouse.quote_table.return_value = "`proj.crm.contacts_normalized`"
    mocker.patch.object(config, "LOCAL_CONTACTS_EDITS", "./data/contact_updates.csv")

    request = sync_normalized_contacts.build_request("proj.crm.contacts_normalized", apply=False)

    assert request.object_type == "contacts"
    assert request.id_column == "id"
    assert request.property_map == {"country": "country_normalized", "state": "state_normalized"}
    assert "FROM `proj.crm.contacts_normalized`" in request.query
    assert request.audit_path == "./data/contact_updates.csv"
    assert request.apply is False
