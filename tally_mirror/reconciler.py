"""
Upsert of a single master record.

One algorithm serves every entity kind; the kind descriptor supplies the
attribute list. The rule is overwrite-wholesale, keyed only on
(tenant_id, external_id):

- existing row: every mutable field is replaced by the candidate's value,
  the surrogate id is kept
- no row: the candidate is inserted

Applying the same candidate twice leaves the same stored state. Revisions are
not compared unless ``skip_stale_revisions`` is switched on, so by default an
older alter id arriving late overwrites a newer one (last write wins).
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Mapping, Optional, TYPE_CHECKING
from loguru import logger
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt
from .config import MirrorConfig
from .entities import EntityKind, MasterRecord, get_entity_kind
from .errors import ConflictError, MirrorError, PersistenceError, ValidationError
from .parsers import parse_id, parse_tenant

if TYPE_CHECKING:
    from .stores.base import EntityStore

INSERTED = "inserted"
UPDATED = "updated"
SKIPPED = "skipped"


@dataclass
class UpsertResult:
    """Persisted record plus what the reconciler did with it."""

    record: MasterRecord
    action: str


def merge_record(
    kind: EntityKind, existing: MasterRecord, candidate: MasterRecord, now: datetime
) -> MasterRecord:
    """Overwrite every mutable field of ``existing`` with the candidate's."""
    merged = existing.copy()
    merged.revision = candidate.revision
    merged.external_guid = candidate.external_guid
    merged.name = candidate.name
    merged.user_id = candidate.user_id
    merged.attributes = {name: candidate.attributes.get(name) for name in kind.field_names}
    merged.is_active = candidate.is_active
    merged.is_deleted = candidate.is_deleted
    merged.last_sync_time = now
    return merged


class Reconciler:
    """
    Per-record upsert against the entity stores.

    Args:
        entity_stores: Mapping of kind name -> EntityStore
        config: Supplies conflict retry attempts and the stale revision guard
        clock: Returns the current time; replaceable in tests
    """

    def __init__(
        self,
        entity_stores: Mapping[str, "EntityStore"],
        config: Optional[MirrorConfig] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.entity_stores = dict(entity_stores)
        self.config = config or MirrorConfig.from_env()
        self.clock = clock

    def store_for(self, kind: EntityKind | str) -> "EntityStore":
        kind = get_entity_kind(kind)
        store = self.entity_stores.get(kind.name)
        if store is None:
            raise ValueError(f"No store configured for {kind.name}")
        return store

    def prepare(self, kind: EntityKind | str, record: MasterRecord | dict) -> MasterRecord:
        """
        Validate a candidate and return a normalised copy.

        Raises:
            ValidationError: tenant id or master id missing, or the record
                belongs to another kind
        """
        kind = get_entity_kind(kind)
        if isinstance(record, dict):
            record = MasterRecord.from_payload(kind, record)
        elif not isinstance(record, MasterRecord):
            raise ValidationError(
                f"Expected a {kind.name} record, got {type(record).__name__}",
                entity_kind=kind.name,
            )

        candidate = record.copy()
        candidate.tenant_id = parse_tenant(record.tenant_id)
        candidate.external_id = parse_id(record.external_id)

        if candidate.tenant_id is None:
            raise ValidationError(
                "tenant id is required", entity_kind=kind.name, external_id=record.external_id
            )
        if candidate.external_id is None:
            raise ValidationError(
                "master id is required", entity_kind=kind.name, tenant_id=candidate.tenant_id
            )
        if candidate.entity_kind and candidate.entity_kind != kind.name:
            try:
                declared = get_entity_kind(candidate.entity_kind)
            except ValueError:
                declared = None
            if declared is kind:
                candidate.entity_kind = kind.name
        if candidate.entity_kind and candidate.entity_kind != kind.name:
            raise ValidationError(
                f"Record of kind {candidate.entity_kind} sent as {kind.name}",
                entity_kind=kind.name,
                tenant_id=candidate.tenant_id,
                external_id=candidate.external_id,
            )

        revision = parse_id(record.revision) if record.revision is not None else 0
        if revision is None:
            raise ValidationError(
                f"alter id must be an integer, got {record.revision!r}",
                entity_kind=kind.name,
                tenant_id=candidate.tenant_id,
                external_id=candidate.external_id,
            )
        candidate.revision = revision

        unknown = set(candidate.attributes) - set(kind.field_names)
        if unknown:
            logger.debug(f"Dropping unknown {kind.name} attributes: {sorted(unknown)}")
        candidate.attributes = {name: candidate.attributes.get(name) for name in kind.field_names}
        candidate.entity_kind = kind.name
        candidate.id = None
        return candidate

    def upsert(self, kind: EntityKind | str, record: MasterRecord | dict) -> MasterRecord:
        """Insert or update one record and return the persisted row."""
        return self.reconcile(kind, record).record

    def reconcile(self, kind: EntityKind | str, record: MasterRecord | dict) -> UpsertResult:
        """
        Insert or update one record, reporting whether it was inserted,
        updated or skipped.

        Raises:
            ValidationError: candidate is missing tenant id or master id
            ConflictError: inserts kept colliding after all retry attempts
            PersistenceError: the store failed; nothing was written
        """
        kind = get_entity_kind(kind)
        candidate = self.prepare(kind, record)
        store = self.store_for(kind)

        # A concurrent first insert of the same key makes ours collide; the
        # next attempt finds that row and updates it instead.
        retrying = Retrying(
            retry=retry_if_exception_type(ConflictError),
            stop=stop_after_attempt(self.config.conflict_retry_attempts),
            reraise=True,
            before_sleep=lambda retry_state: logger.warning(
                f"Insert conflict on {kind.name} {candidate.external_id}, "
                f"retrying as update (attempt {retry_state.attempt_number})..."
            ),
        )
        return retrying(self._apply, kind, store, candidate)

    def _apply(self, kind: EntityKind, store: "EntityStore", candidate: MasterRecord) -> UpsertResult:
        existing = self._call(store.find_by_tenant_and_external_id, candidate, candidate.tenant_id, candidate.external_id)
        now = self.clock()

        if existing is None:
            row = candidate.copy()
            row.last_sync_time = row.last_sync_time or now
            saved = self._call(store.save, candidate, row)
            logger.debug(
                f"Inserted {kind.name} {saved.external_id} for tenant {saved.tenant_id} "
                f"(alter id {saved.revision})"
            )
            return UpsertResult(saved, INSERTED)

        if self.config.skip_stale_revisions and candidate.revision < existing.revision:
            logger.info(
                f"Skipped stale {kind.name} {existing.external_id} for tenant {existing.tenant_id}: "
                f"alter id {candidate.revision} < stored {existing.revision}"
            )
            return UpsertResult(existing, SKIPPED)

        if candidate.revision < existing.revision:
            logger.debug(
                f"{kind.name} {existing.external_id} alter id going back from "
                f"{existing.revision} to {candidate.revision}"
            )

        saved = self._call(store.save, candidate, merge_record(kind, existing, candidate, now))
        logger.debug(
            f"Updated {kind.name} {saved.external_id} for tenant {saved.tenant_id} "
            f"(alter id {saved.revision})"
        )
        return UpsertResult(saved, UPDATED)

    def _call(self, fn: Callable, candidate: MasterRecord, *args: Any):
        """Run a store call, surfacing foreign storage errors as PersistenceError."""
        try:
            return fn(*args)
        except MirrorError:
            raise
        except Exception as e:
            raise PersistenceError(
                f"Store failure: {e}",
                entity_kind=candidate.entity_kind,
                tenant_id=candidate.tenant_id,
                external_id=candidate.external_id,
            ) from e
