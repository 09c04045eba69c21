"""
Bulk sync of one entity kind.

Records in a batch are reconciled one at a time and independently. A bad
record is reported and the rest are still attempted; records already written
stay written. The batch is not atomic, but because every upsert is
idempotent a caller can always resend the whole batch.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence
from loguru import logger
from .entities import EntityKind, MasterRecord, get_entity_kind
from .errors import MirrorError, ValidationError
from .parsers import parse_tenant
from .reconciler import Reconciler, INSERTED, UPDATED, SKIPPED


@dataclass
class RecordFailure:
    """A record that could not be reconciled."""

    index: int
    external_id: Any
    error_type: str
    message: str


@dataclass
class BatchSummary:
    """Outcome of one sync_batch call."""

    entity_kind: str
    tenant_id: Optional[str] = None
    total_received: int = 0
    total_processed: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    max_revision: int = 0
    first_error: Optional[str] = None
    failures: list[RecordFailure] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def succeeded(self) -> bool:
        return self.total_processed == self.total_received

    def add_failure(self, index: int, external_id: Any, error: Exception):
        if self.first_error is None:
            self.first_error = str(error)
        self.failures.append(RecordFailure(index, external_id, type(error).__name__, str(error)))

    def as_dict(self) -> dict:
        """Response shape for the calling layer."""
        return {
            "success": self.succeeded,
            "entityKind": self.entity_kind,
            "cmpId": self.tenant_id,
            "totalReceived": self.total_received,
            "totalProcessed": self.total_processed,
            "inserted": self.inserted,
            "updated": self.updated,
            "skipped": self.skipped,
            "maxAlterId": self.max_revision,
            "firstError": self.first_error,
            "failures": [
                {
                    "index": f.index,
                    "masterId": f.external_id,
                    "errorType": f.error_type,
                    "message": f.message,
                }
                for f in self.failures
            ],
        }


def _to_record(kind: EntityKind, item: Any) -> Any:
    if isinstance(item, dict):
        return MasterRecord.from_payload(kind, item)
    return item


def _batch_tenant(kind: EntityKind, records: list, tenant_id: Any) -> Optional[str]:
    """
    Check that the batch does not mix tenants.

    Records without a tenant are left for per-record validation.
    """
    expected = parse_tenant(tenant_id)
    if tenant_id is not None and expected is None:
        raise ValidationError("tenant id for the batch is blank", entity_kind=kind.name)

    seen = []
    for record in records:
        if isinstance(record, MasterRecord):
            tenant = parse_tenant(record.tenant_id)
            if tenant is not None and tenant not in seen:
                seen.append(tenant)

    if expected is not None:
        foreign = [t for t in seen if t != expected]
        if foreign:
            raise ValidationError(
                f"Batch for tenant {expected} contains records of tenants {foreign}",
                entity_kind=kind.name,
                tenant_id=expected,
            )
        return expected

    if len(seen) > 1:
        raise ValidationError(
            f"Batch mixes records of tenants {seen}", entity_kind=kind.name
        )
    return seen[0] if seen else None


class BatchCoordinator:
    """Drives the reconciler over a list of records of one kind."""

    def __init__(self, reconciler: Reconciler):
        self.reconciler = reconciler

    def sync_batch(
        self,
        kind: EntityKind | str,
        records: Sequence[MasterRecord | dict],
        tenant_id: Any = None,
    ) -> BatchSummary:
        """
        Reconcile every record of the batch in input order.

        Args:
            kind: Entity kind of every record in the batch
            records: MasterRecord objects or payload dicts
            tenant_id: Tenant the caller authenticated; when given, every
                record that names a tenant must name this one

        Returns:
            BatchSummary with counts and the first error encountered

        Raises:
            ValidationError: the batch is not a list or mixes tenants.
                Nothing has been written in that case.
        """
        kind = get_entity_kind(kind)
        if not isinstance(records, (list, tuple)):
            raise ValidationError(
                f"Batch must be a list of records, got {type(records).__name__}",
                entity_kind=kind.name,
            )

        candidates = [_to_record(kind, item) for item in records]
        tenant = _batch_tenant(kind, candidates, tenant_id)

        summary = BatchSummary(
            entity_kind=kind.name,
            tenant_id=tenant,
            total_received=len(candidates),
        )
        logger.info(f"Syncing {len(candidates)} {kind.label} for tenant {tenant}...")

        for index, candidate in enumerate(candidates):
            external_id = getattr(candidate, "external_id", None)
            try:
                result = self.reconciler.reconcile(kind, candidate)
            except MirrorError as e:
                logger.warning(f"  {kind.name} #{index} (master id {external_id}) failed: {e}")
                summary.add_failure(index, external_id, e)
                continue

            summary.total_processed += 1
            if result.action == INSERTED:
                summary.inserted += 1
            elif result.action == UPDATED:
                summary.updated += 1
            elif result.action == SKIPPED:
                summary.skipped += 1
            summary.max_revision = max(summary.max_revision, result.record.revision or 0)

        logger.info(
            f"  Synced {summary.total_processed}/{summary.total_received} {kind.label} "
            f"({summary.inserted} inserted, {summary.updated} updated, "
            f"{summary.skipped} skipped, {summary.failed} failed)"
        )
        return summary
