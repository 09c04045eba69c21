"""
Stores for master records and sync cursors.

- In-memory stores for tests and dry runs
- PostgreSQL stores for production
"""
from __future__ import annotations
from typing import Optional
from ..config import MirrorConfig
from ..entities import ENTITY_KINDS
from .base import EntityStore, CursorStore
from .memory import InMemoryEntityStore, InMemoryCursorStore
from .postgres import PostgresDatabase, PostgresEntityStore, PostgresCursorStore, get_connection


def build_memory_stores() -> tuple[dict[str, EntityStore], CursorStore]:
    """One in-memory store per kind plus an in-memory cursor store."""
    return (
        {name: InMemoryEntityStore(kind) for name, kind in ENTITY_KINDS.items()},
        InMemoryCursorStore(),
    )


def build_stores(
    config: Optional[MirrorConfig] = None,
) -> tuple[dict[str, EntityStore], CursorStore, Optional[PostgresDatabase]]:
    """
    Build the stores for the configured backend.

    Returns:
        Tuple of (entity stores by kind, cursor store, database or None).
        The caller owns the database and must close it.
    """
    config = config or MirrorConfig.from_env()
    if config.backend == "memory":
        entity_stores, cursor_store = build_memory_stores()
        return entity_stores, cursor_store, None
    if config.backend != "postgres":
        raise ValueError(f"Unknown backend: {config.backend}. Valid: postgres, memory")

    database = PostgresDatabase(config)
    return database.entity_stores(), database.cursor_store(), database


__all__ = [
    "EntityStore",
    "CursorStore",
    "InMemoryEntityStore",
    "InMemoryCursorStore",
    "PostgresDatabase",
    "PostgresEntityStore",
    "PostgresCursorStore",
    "get_connection",
    "build_stores",
    "build_memory_stores",
]
