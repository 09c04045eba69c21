"""
Exceptions raised by the reconciliation engine.
"""
from __future__ import annotations
from typing import Optional, Any


class MirrorError(Exception):
    """Base class for mirror errors.

    Carries the entity kind, tenant and external id when they are known so
    callers can report exactly which record failed.
    """

    def __init__(
        self,
        message: str,
        entity_kind: Optional[str] = None,
        tenant_id: Optional[str] = None,
        external_id: Optional[Any] = None,
    ):
        super().__init__(message)
        self.message = message
        self.entity_kind = entity_kind
        self.tenant_id = tenant_id
        self.external_id = external_id

    def __str__(self) -> str:
        context = [
            f"{label}={value}"
            for label, value in (
                ("kind", self.entity_kind),
                ("tenant", self.tenant_id),
                ("master_id", self.external_id),
            )
            if value is not None
        ]
        if not context:
            return self.message
        return f"{self.message} ({', '.join(context)})"


class ValidationError(MirrorError):
    """Raised when a record or batch is malformed. Nothing is persisted."""
    pass


class ConflictError(MirrorError):
    """Raised by a store when an insert collides with an existing (tenant, master id)."""
    pass


class PersistenceError(MirrorError):
    """Raised when the underlying storage fails."""
    pass
