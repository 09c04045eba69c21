"""
Tally master mirror - incremental reconciliation of Tally master data.

Keeps a multi-tenant copy of Tally masters (groups, ledgers, stock items,
cost centres, currencies, ...) convergent with what the Tally client pushes.
Every record is keyed on (company, master id) and carries the alter id Tally
bumps on each change.

Key Features:
- Idempotent upsert of one master record, for all twelve master kinds
- Batch sync with per-record failure reporting
- Acknowledged sync cursor per company
- Store-derived max alter id, per kind and overall

Usage:
    # Load a batch file
    python -m tally_mirror load ledgers.json --entity ledger --tenant 42

    # Compare acknowledged and stored alter ids
    python -m tally_mirror status --tenant 42
"""

__version__ = "1.0.0"

from .config import MirrorConfig
from .entities import ENTITY_KINDS, EntityKind, MasterRecord, get_entity_kind
from .errors import MirrorError, ValidationError, ConflictError, PersistenceError
from .sync import MasterSync

__all__ = [
    "MirrorConfig",
    "ENTITY_KINDS",
    "EntityKind",
    "MasterRecord",
    "get_entity_kind",
    "MirrorError",
    "ValidationError",
    "ConflictError",
    "PersistenceError",
    "MasterSync",
    "__version__",
]
