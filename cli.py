#!/usr/bin/env python3
# cli.py
"""
Command line entry point for the HubSpot / warehouse tooling.

Examples:
    python cli.py sync-properties --object contacts --query sql/normalized.sql \\
        --map country=country_normalized --map state=state_normalized --id-column id --apply
    python cli.py export companies
    python cli.py bulk all --apply --limit 100
    python cli.py delete-candidates --list-name Delete_Candidates --enrich
    python cli.py check-env
    python cli.py probe contacts 3376176 25382375467
"""

import argparse
import asyncio
import json
import sys
from typing import Dict, List, Optional

from utils import config
from utils.config import ConfigurationError
from utils.logger import get_logger

from hubspot_client.client import get_hubspot_client
from hubspot_client.exceptions import HubSpotError
from services.bulk_actions import ACTIONS, run_action
from services.delete_candidates import DEFAULT_LIST_NAME, export_delete_candidates
from services.diagnostics import check_env, probe_record
from services.exporters import EXPORTERS, run_export
from services.property_sync import sync_properties_from_warehouse
from sync.errors import SyncAbortedError
from sync.models import SyncRequest
from warehouse.exceptions import WarehouseError
from warehouse.paginator import get_warehouse

logger = get_logger("cli")


def _print(result) -> None:
    if hasattr(result, "model_dump"):
        result = result.model_dump(mode="json")
    print(json.dumps(result, indent=2, default=str))


def _parse_mapping(pairs: List[str]) -> Dict[str, str]:
    mapping = {}
    for pair in pairs:
        target, sep, column = pair.partition("=")
        if not sep or not target.strip() or not column.strip():
            raise ConfigurationError(f"--map expects TARGET_PROPERTY=SOURCE_COLUMN, got {pair!r}")
        mapping[target.strip()] = column.strip()
    return mapping


def _timeout(value: str) -> Optional[float]:
    if value.strip().lower() in ("none", "off"):
        return None
    try:
        return float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected seconds or none/off, got {value!r}")


# --- Commands ---

def cmd_sync_properties(args) -> int:
    if args.map and args.column:
        raise ConfigurationError("--column goes with --property; with --map each pair names its column")
    property_map = _parse_mapping(args.map) if args.map else args.property
    request = SyncRequest(
        object_type=args.object,
        query=args.query,
        property_map=property_map,
        column_name=args.column,
        id_column=args.id_column,
        page_size=args.page_size,
        wave_size=args.wave_size,
        concurrency=args.concurrency,
        drop_blanks=not args.keep_blanks,
        apply=args.apply,
        skip_already_processed=not args.no_skip_processed,
        checkpoint_path=args.checkpoint,
        audit_path=args.audit,
        update_timeout=args.timeout,
    )
    summary = asyncio.run(sync_properties_from_warehouse(request, get_hubspot_client(), get_warehouse()))
    _print(summary)
    return 0


def cmd_export(args) -> int:
    _print(run_export(args.name, get_hubspot_client(), data_dir=args.data_dir))
    return 0


def cmd_bulk(args) -> int:
    _print(run_action(args.action, get_hubspot_client(), get_warehouse(), apply=args.apply, limit=args.limit))
    return 0


def cmd_delete_candidates(args) -> int:
    hubspot_client = get_hubspot_client() if args.enrich else None
    _print(export_delete_candidates(
        get_warehouse(), hubspot_client, list_name=args.list_name, limit=args.limit, enrich=args.enrich
    ))
    return 0


def cmd_check_env(args) -> int:
    _print(check_env())
    return 0


def cmd_probe(args) -> int:
    client = get_hubspot_client()
    _print([probe_record(client, args.object_type, record_id) for record_id in args.ids])
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Sync warehouse data into HubSpot and export HubSpot data.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sync = sub.add_parser("sync-properties", help="Write warehouse query results onto HubSpot record properties")
    sync.add_argument("--object", required=True, help="HubSpot object type (contacts, companies, deals, tickets or a custom object)")
    sync.add_argument("--query", required=True, help="SQL text or a path to a .sql file")
    sync.add_argument("--id-column", required=True, help="Column holding the HubSpot record id")
    mapping = sync.add_mutually_exclusive_group()
    mapping.add_argument("--property", help="Single target property (use with --column)")
    mapping.add_argument("--map", action="append", default=[], metavar="PROPERTY=COLUMN", help="Map several properties; repeatable")
    sync.add_argument("--column", help="Source column for --property")
    sync.add_argument("--page-size", type=int, default=config.SYNC_PAGE_SIZE)
    sync.add_argument("--wave-size", type=int, default=config.SYNC_WAVE_SIZE)
    sync.add_argument("--concurrency", type=int, default=config.SYNC_CONCURRENCY)
    sync.add_argument("--timeout", type=_timeout, default=config.SYNC_UPDATE_TIMEOUT,
                      help="Seconds per update call, or none/off to disable")
    sync.add_argument("--keep-blanks", action="store_true", help="Send empty strings instead of dropping them")
    sync.add_argument("--no-skip-processed", action="store_true", help="Retry ids already in the checkpoint")
    sync.add_argument("--checkpoint", default=config.SYNC_CHECKPOINT_PATH)
    sync.add_argument("--audit", help="CSV file receiving one row per processed record")
    sync.add_argument("--apply", action="store_true", help="Write to HubSpot (default is a dry run)")
    sync.set_defaults(func=cmd_sync_properties)

    export = sub.add_parser("export", help="Export HubSpot data to CSV")
    export.add_argument("name", choices=sorted(EXPORTERS))
    export.add_argument("--data-dir", default=None, help=f"Output directory (default: {config.DATA_DIR})")
    export.set_defaults(func=cmd_export)

    bulk = sub.add_parser("bulk", help="Merge / update / archive contacts from warehouse control tables")
    bulk.add_argument("action", choices=ACTIONS)
    bulk.add_argument("--apply", action="store_true", help="Write to HubSpot (default is a dry run)")
    bulk.add_argument("--limit", type=int, default=None)
    bulk.set_defaults(func=cmd_bulk)

    candidates = sub.add_parser("delete-candidates", help="Copy BQ_DELETE_TABLE ids into the contact-list table")
    candidates.add_argument("--list-name", default=DEFAULT_LIST_NAME)
    candidates.add_argument("--limit", type=int, default=None)
    candidates.add_argument("--enrich", action="store_true", help="Take e-mails from HubSpot instead of the warehouse")
    candidates.set_defaults(func=cmd_delete_candidates)

    env = sub.add_parser("check-env", help="Show which settings are present")
    env.set_defaults(func=cmd_check_env)

    probe = sub.add_parser("probe", help="Look record ids up by id and by batch read")
    probe.add_argument("object_type")
    probe.add_argument("ids", nargs="+")
    probe.set_defaults(func=cmd_probe)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except ConfigurationError as e:
        logger.error(f"❌ Configuration error: {e}")
        return 2
    except SyncAbortedError as e:
        logger.error(f"❌ {e}")
        if e.summary is not None:
            _print(e.summary)
        return 1
    except (HubSpotError, WarehouseError) as e:
        logger.error(f"❌ Failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
