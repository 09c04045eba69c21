"""
Store contracts.

An entity store is a dumb persistence layer for one master kind. It knows
nothing about merge policy; the reconciler decides what to write.
"""
from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Optional
from ..entities import EntityKind, MasterRecord, get_entity_kind
from ..cursor import SyncCursor


class EntityStore(ABC):
    """
    Persistence for the records of one entity kind.

    Contract:
    - ``save`` inserts when ``record.id`` is None and updates the row with that
      id otherwise. It never changes tenant_id, external_id or id of an
      existing row.
    - A second insert for the same (tenant_id, external_id) raises
      ``ConflictError``.
    - Storage failures raise ``PersistenceError`` and leave the row untouched.
    """

    def __init__(self, kind: EntityKind | str):
        self.kind = get_entity_kind(kind)

    @abstractmethod
    def find_by_tenant_and_external_id(
        self, tenant_id: str, external_id: int
    ) -> Optional[MasterRecord]:
        """Return the stored record for (tenant, master id), or None."""

    @abstractmethod
    def find_by_tenant_and_guid(self, tenant_id: str, guid: str) -> Optional[MasterRecord]:
        """Return the tenant's record with this Tally GUID, or None. Lookup only."""

    @abstractmethod
    def save(self, record: MasterRecord) -> MasterRecord:
        """Insert or update a record and return what was persisted."""

    @abstractmethod
    def max_revision(self, tenant_id: str) -> int:
        """Highest revision stored for the tenant; 0 when there are no rows."""

    @abstractmethod
    def count(self, tenant_id: Optional[str] = None) -> int:
        """Number of rows, optionally for one tenant."""

    @abstractmethod
    def list_by_tenant(self, tenant_id: str, active_only: bool = False) -> list[MasterRecord]:
        """
        Records of the tenant ordered by master id.

        With ``active_only`` rows that are inactive or soft-deleted are left out.
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.kind.name!r})"


class CursorStore(ABC):
    """Persistence for per-tenant sync cursors."""

    @abstractmethod
    def get(self, tenant_id: str) -> Optional[SyncCursor]:
        """Return the tenant's cursor, or None if it never acknowledged."""

    @abstractmethod
    def save(self, cursor: SyncCursor) -> SyncCursor:
        """Insert or overwrite the tenant's cursor."""
