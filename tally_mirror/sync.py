"""
Sync entry points for the Tally master mirror.

Provides:
- Single record upsert
- Batch sync of one entity kind
- Sync cursor acknowledgement and status
- A command line for loading JSON batches and checking tenant status
"""
from __future__ import annotations
import argparse
import json
import sys
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence
from loguru import logger

from .config import MirrorConfig
from .entities import ENTITY_KINDS, EntityKind, MasterRecord, get_entity_kind
from .errors import MirrorError, ValidationError
from .stores import EntityStore, CursorStore, build_stores
from .reconciler import Reconciler
from .batch import BatchCoordinator, BatchSummary
from .cursor import SyncCursor, SyncCursorTracker
from .logging_setup import configure_logging
from .parsers import parse_tenant


class MasterSync:
    """
    Facade over the reconciliation engine.

    Coordinates the reconciler, batch coordinator and cursor tracker over one
    set of stores.

    Usage:
        with MasterSync() as sync:
            summary = sync.sync_batch("ledger", payloads, tenant_id="42")
            sync.record_acknowledgement("42", summary.max_revision, "ledger")
            sync.get_current_max_revision("42")
    """

    def __init__(
        self,
        config: Optional[MirrorConfig] = None,
        entity_stores: Optional[Mapping[str, EntityStore]] = None,
        cursor_store: Optional[CursorStore] = None,
    ):
        self.config = config or MirrorConfig.from_env()
        self.database = None
        if entity_stores is None or cursor_store is None:
            built_stores, built_cursor, self.database = build_stores(self.config)
            entity_stores = entity_stores if entity_stores is not None else built_stores
            cursor_store = cursor_store if cursor_store is not None else built_cursor

        missing = set(ENTITY_KINDS) - set(entity_stores)
        if missing:
            raise ValueError(f"No store configured for: {sorted(missing)}")

        self.entity_stores = dict(entity_stores)
        self.reconciler = Reconciler(self.entity_stores, self.config)
        self.batches = BatchCoordinator(self.reconciler)
        self.tracker = SyncCursorTracker(self.entity_stores, cursor_store)

    def initialize_schema(self):
        """Create database tables (no-op for in-memory stores)."""
        if self.database is None:
            logger.info("In-memory backend, no schema to initialize")
            return
        self.database.initialize_schema()

    def upsert(self, kind: EntityKind | str, record: MasterRecord | dict) -> MasterRecord:
        return self.reconciler.upsert(kind, record)

    def sync_batch(
        self,
        kind: EntityKind | str,
        records: Sequence[MasterRecord | dict],
        tenant_id: Any = None,
        acknowledge: bool = False,
    ) -> BatchSummary:
        """
        Reconcile a batch of one kind.

        Args:
            kind: Entity kind of the batch
            records: MasterRecord objects or payload dicts
            tenant_id: Tenant the caller authenticated
            acknowledge: When every record went through, record the batch's
                highest alter id as the tenant's acknowledged revision

        Returns:
            BatchSummary
        """
        summary = self.batches.sync_batch(kind, records, tenant_id)
        if acknowledge:
            if summary.succeeded and summary.total_processed and summary.tenant_id:
                self.tracker.record_acknowledgement(
                    summary.tenant_id, summary.max_revision, summary.entity_kind
                )
            else:
                logger.warning(
                    f"Not acknowledging {summary.entity_kind} batch: "
                    f"{summary.failed} of {summary.total_received} records failed"
                )
        return summary

    def get_last_acknowledged_revision(self, tenant_id: Any) -> int:
        return self.tracker.get_last_acknowledged_revision(tenant_id)

    def get_current_max_revision(self, tenant_id: Any) -> int:
        return self.tracker.get_current_max_revision(tenant_id)

    def record_acknowledgement(
        self, tenant_id: Any, revision: Any, entity_kind: Optional[str] = None
    ) -> SyncCursor:
        return self.tracker.record_acknowledgement(tenant_id, revision, entity_kind)

    def get_all_entity_kind_maxima(self, tenant_id: Any) -> dict[str, int]:
        return self.tracker.get_all_entity_kind_maxima(tenant_id)

    def sync_status(self, tenant_id: Any) -> dict:
        return self.tracker.status(tenant_id)

    def find_by_guid(self, kind: EntityKind | str, tenant_id: Any, guid: str) -> Optional[MasterRecord]:
        """Look up a stored master by its Tally GUID. Never used to key writes."""
        return self.reconciler.store_for(kind).find_by_tenant_and_guid(parse_tenant(tenant_id), guid)

    def list_masters(
        self, kind: EntityKind | str, tenant_id: Any, active_only: bool = False
    ) -> list[MasterRecord]:
        return self.reconciler.store_for(kind).list_by_tenant(parse_tenant(tenant_id), active_only)

    def close(self):
        """Close the database connection, if any."""
        if self.database is not None:
            self.database.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def read_batch_file(path: str | Path) -> list:
    """
    Read a batch from a JSON file.

    Accepts a bare list of records or an object with a "data" list, the
    shape the Tally client posts.
    """
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(payload, dict) and "data" in payload:
        payload = payload["data"]
    if not isinstance(payload, list):
        raise ValidationError(f"{path} does not contain a list of records")
    return payload


def _print_json(data: Any):
    print(json.dumps(data, indent=2, default=str))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tally_mirror",
        description="Tally master mirror - reconcile master batches into PostgreSQL",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument(
        "--memory",
        action="store_true",
        help="Use in-memory stores (dry run, nothing is persisted)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-schema", help="Create schema and tables")

    load = sub.add_parser("load", help="Sync a JSON batch file of one entity kind")
    load.add_argument("file", help="JSON file with a list of master records")
    load.add_argument(
        "--entity",
        required=True,
        help=f"Entity kind ({', '.join(ENTITY_KINDS)})",
    )
    load.add_argument("--tenant", help="Expected tenant (company) id of every record")
    load.add_argument(
        "--ack",
        action="store_true",
        help="Acknowledge the batch's highest alter id if every record succeeded",
    )

    status = sub.add_parser("status", help="Show acknowledged vs stored alter ids")
    status.add_argument("--tenant", required=True)

    ack = sub.add_parser("ack", help="Record an acknowledged alter id")
    ack.add_argument("--tenant", required=True)
    ack.add_argument("--revision", required=True, type=int)
    ack.add_argument("--entity", help="Entity kind that triggered the acknowledgement")

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Command line entry point. Returns the process exit code."""
    args = build_parser().parse_args(argv)

    config = MirrorConfig.from_env()
    if args.memory:
        config.backend = "memory"
    configure_logging(config, verbose=args.verbose)

    errors = config.validate()
    if errors:
        for error in errors:
            logger.error(error)
        return 2

    try:
        with MasterSync(config) as sync:
            if args.command == "init-schema":
                sync.initialize_schema()
                print("Schema initialized successfully")
                return 0

            if args.command == "load":
                kind = get_entity_kind(args.entity)
                records = read_batch_file(args.file)
                summary = sync.sync_batch(kind, records, tenant_id=args.tenant, acknowledge=args.ack)
                _print_json(summary.as_dict())
                return 0 if summary.succeeded else 1

            if args.command == "status":
                _print_json(sync.sync_status(args.tenant))
                return 0

            if args.command == "ack":
                cursor = sync.record_acknowledgement(args.tenant, args.revision, args.entity)
                _print_json(
                    {
                        "cmpId": cursor.tenant_id,
                        "lastAlterID": cursor.last_acknowledged_revision,
                        "entityType": cursor.entity_kind,
                        "lastSyncTime": cursor.last_sync_time,
                    }
                )
                return 0
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Could not read input: {e}")
        return 2
    except MirrorError as e:
        logger.error(f"Sync failed: {e}")
        return 1
    except ValueError as e:
        logger.error(str(e))
        return 2

    return 0


if __name__ == "__main__":
    sys.exit(main())
