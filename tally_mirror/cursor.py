"""
Per-tenant sync cursor bookkeeping.

Two answers to "how current is this tenant's data" are kept apart on purpose:

- the acknowledged revision is whatever the client last reported having
  delivered. It is cheap to read but only as good as the client's reporting.
- the current max revision is recomputed from the entity stores every time.
  It is slower, but stays correct even when acknowledgements are skipped or
  wrong, so comparing the two exposes drift.
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Optional, TYPE_CHECKING
from loguru import logger
from .errors import ValidationError
from .parsers import parse_id, parse_tenant, parse_text

if TYPE_CHECKING:
    from .stores.base import EntityStore, CursorStore


@dataclass
class SyncCursor:
    """Last revision a tenant's client acknowledged."""

    tenant_id: str
    last_acknowledged_revision: int = 0
    entity_kind: Optional[str] = None
    last_sync_time: Optional[datetime] = None


def _require_tenant(tenant_id: Any) -> str:
    tenant = parse_tenant(tenant_id)
    if tenant is None:
        raise ValidationError("tenant id is required")
    return tenant


class SyncCursorTracker:
    """
    Reads and updates sync cursors, and derives the true max revision.

    Args:
        entity_stores: Mapping of kind name -> EntityStore for every kind
        cursor_store: Where acknowledgements are kept
    """

    def __init__(self, entity_stores: Mapping[str, "EntityStore"], cursor_store: "CursorStore"):
        self.entity_stores = dict(entity_stores)
        self.cursor_store = cursor_store

    def get_cursor(self, tenant_id: Any) -> Optional[SyncCursor]:
        return self.cursor_store.get(_require_tenant(tenant_id))

    def get_last_acknowledged_revision(self, tenant_id: Any) -> int:
        """Client-reported revision, 0 when the tenant never acknowledged."""
        cursor = self.get_cursor(tenant_id)
        return cursor.last_acknowledged_revision if cursor else 0

    def record_acknowledgement(
        self,
        tenant_id: Any,
        revision: Any,
        entity_kind: Optional[str] = None,
    ) -> SyncCursor:
        """
        Store the revision a client says it has delivered.

        The cursor may move backwards; that is the client's call. A backward
        move is logged so it shows up when chasing drift.
        """
        tenant = _require_tenant(tenant_id)
        alter_id = parse_id(revision)
        if alter_id is None:
            raise ValidationError(f"revision must be an integer, got {revision!r}", tenant_id=tenant)

        previous = self.cursor_store.get(tenant)
        if previous and alter_id < previous.last_acknowledged_revision:
            logger.warning(
                f"Tenant {tenant} cursor moved back from "
                f"{previous.last_acknowledged_revision} to {alter_id}"
            )

        cursor = self.cursor_store.save(
            SyncCursor(
                tenant_id=tenant,
                last_acknowledged_revision=alter_id,
                entity_kind=parse_text(entity_kind),
                last_sync_time=datetime.now(),
            )
        )
        logger.info(f"Tenant {tenant} acknowledged alter id {alter_id} ({cursor.entity_kind or 'all'})")
        return cursor

    def get_all_entity_kind_maxima(self, tenant_id: Any) -> dict[str, int]:
        """Max revision per entity kind, read straight from the stores."""
        tenant = _require_tenant(tenant_id)
        return {
            name: store.max_revision(tenant) or 0
            for name, store in self.entity_stores.items()
        }

    def get_current_max_revision(self, tenant_id: Any) -> int:
        """Highest revision stored for the tenant across all kinds."""
        return max(self.get_all_entity_kind_maxima(tenant_id).values(), default=0)

    def status(self, tenant_id: Any) -> dict:
        """Both revisions side by side, with the gap between them."""
        tenant = _require_tenant(tenant_id)
        cursor = self.cursor_store.get(tenant)
        maxima = self.get_all_entity_kind_maxima(tenant)
        acknowledged = cursor.last_acknowledged_revision if cursor else 0
        current = max(maxima.values(), default=0)
        return {
            "tenantId": tenant,
            "lastAcknowledgedRevision": acknowledged,
            "currentMaxRevision": current,
            "drift": current - acknowledged,
            "inSync": current == acknowledged,
            "entityKind": cursor.entity_kind if cursor else None,
            "lastSyncTime": cursor.last_sync_time.isoformat() if cursor and cursor.last_sync_time else None,
            "masters": maxima,
        }
