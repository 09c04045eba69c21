"""
In-memory stores.

Used for tests and for dry runs of a batch file without a database. They
honour the same uniqueness rule as the PostgreSQL tables.
"""
from __future__ import annotations
import itertools
import threading
from dataclasses import replace
from datetime import datetime
from typing import Optional
from loguru import logger
from ..entities import EntityKind, MasterRecord
from ..errors import ConflictError, PersistenceError
from ..cursor import SyncCursor
from .base import EntityStore, CursorStore


class InMemoryEntityStore(EntityStore):
    """Entity store backed by dicts, keyed by surrogate id."""

    def __init__(self, kind: EntityKind | str):
        super().__init__(kind)
        self._rows: dict[int, MasterRecord] = {}
        self._keys: dict[tuple[str, int], int] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def find_by_tenant_and_external_id(
        self, tenant_id: str, external_id: int
    ) -> Optional[MasterRecord]:
        with self._lock:
            row_id = self._keys.get((tenant_id, external_id))
            if row_id is None:
                return None
            return self._rows[row_id].copy()

    def find_by_tenant_and_guid(self, tenant_id: str, guid: str) -> Optional[MasterRecord]:
        if not guid:
            return None
        with self._lock:
            for row in self._rows.values():
                if row.tenant_id == tenant_id and row.external_guid == guid:
                    return row.copy()
        return None

    def save(self, record: MasterRecord) -> MasterRecord:
        with self._lock:
            if record.id is None:
                return self._insert(record)
            return self._update(record)

    def _insert(self, record: MasterRecord) -> MasterRecord:
        key = (record.tenant_id, record.external_id)
        if key in self._keys:
            raise ConflictError(
                f"Duplicate {self.kind.name} insert",
                entity_kind=self.kind.name,
                tenant_id=record.tenant_id,
                external_id=record.external_id,
            )
        stored = record.copy()
        stored.id = next(self._ids)
        stored.entity_kind = self.kind.name
        self._rows[stored.id] = stored
        self._keys[key] = stored.id
        return stored.copy()

    def _update(self, record: MasterRecord) -> MasterRecord:
        current = self._rows.get(record.id)
        if current is None:
            raise PersistenceError(
                f"No {self.kind.name} row with id {record.id}",
                entity_kind=self.kind.name,
                tenant_id=record.tenant_id,
                external_id=record.external_id,
            )
        if (record.tenant_id, record.external_id) != (current.tenant_id, current.external_id):
            logger.debug(
                f"Ignoring identity change on {self.kind.name} row {record.id}: "
                f"kept ({current.tenant_id}, {current.external_id})"
            )
        stored = replace(
            record.copy(),
            id=current.id,
            tenant_id=current.tenant_id,
            external_id=current.external_id,
            entity_kind=self.kind.name,
        )
        self._rows[stored.id] = stored
        return stored.copy()

    def max_revision(self, tenant_id: str) -> int:
        with self._lock:
            return max(
                (row.revision or 0 for row in self._rows.values() if row.tenant_id == tenant_id),
                default=0,
            )

    def count(self, tenant_id: Optional[str] = None) -> int:
        with self._lock:
            if tenant_id is None:
                return len(self._rows)
            return sum(1 for row in self._rows.values() if row.tenant_id == tenant_id)

    def list_by_tenant(self, tenant_id: str, active_only: bool = False) -> list[MasterRecord]:
        with self._lock:
            rows = [
                row.copy()
                for row in self._rows.values()
                if row.tenant_id == tenant_id
                and (not active_only or (row.is_active and not row.is_deleted))
            ]
        return sorted(rows, key=lambda r: r.external_id)


class InMemoryCursorStore(CursorStore):
    """Cursor store backed by a dict keyed by tenant."""

    def __init__(self):
        self._cursors: dict[str, SyncCursor] = {}
        self._lock = threading.Lock()

    def get(self, tenant_id: str) -> Optional[SyncCursor]:
        with self._lock:
            cursor = self._cursors.get(tenant_id)
            return replace(cursor) if cursor else None

    def save(self, cursor: SyncCursor) -> SyncCursor:
        with self._lock:
            stored = replace(cursor, last_sync_time=cursor.last_sync_time or datetime.now())
            self._cursors[cursor.tenant_id] = stored
            return replace(stored)
