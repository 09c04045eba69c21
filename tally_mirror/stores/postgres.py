"""
PostgreSQL stores.

Provides connection management, schema initialisation and the
psycopg-backed entity and cursor stores.
"""
from __future__ import annotations
import psycopg
from psycopg import errors as pg_errors
from psycopg.rows import dict_row
from contextlib import contextmanager
from typing import Generator, Optional
from loguru import logger
from ..config import MirrorConfig
from ..cursor import SyncCursor
from ..entities import ENTITY_KINDS, EntityKind, MasterRecord
from ..errors import ConflictError, PersistenceError
from ..models import get_schema_sql
from .base import EntityStore, CursorStore

COMMON_COLUMNS = ("revision", "external_guid", "name", "user_id", "is_active", "is_deleted", "last_sync_time")


def get_connection(config: Optional[MirrorConfig] = None):
    """
    Create a database connection.

    Returns an autocommit psycopg connection with dict rows; writes that must
    be atomic run inside ``transaction``.
    """
    config = config or MirrorConfig.from_env()
    return psycopg.connect(config.db_url, autocommit=True, row_factory=dict_row)


@contextmanager
def transaction(conn) -> Generator:
    """
    Context manager for database transactions.

    Automatically commits on success, rolls back on exception.
    """
    with conn.transaction():
        yield


class PostgresDatabase:
    """
    Owns the connection shared by all PostgreSQL stores.

    Usage:
        with PostgresDatabase(config) as db:
            db.initialize_schema()
            stores = db.entity_stores()
    """

    def __init__(self, config: Optional[MirrorConfig] = None):
        self.config = config or MirrorConfig.from_env()
        self.schema = self.config.db_schema
        self._conn = None

    @property
    def conn(self):
        """Get or create database connection."""
        if self._conn is None or self._conn.closed:
            try:
                self._conn = get_connection(self.config)
            except psycopg.Error as e:
                raise PersistenceError(f"Could not connect to database: {e}") from e
        return self._conn

    def close(self):
        """Close database connection."""
        if self._conn and not self._conn.closed:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def initialize_schema(self):
        """Create schema, master tables and the cursor table if missing."""
        ddl = get_schema_sql(self.schema)
        try:
            with self.conn.cursor() as cur:
                cur.execute(ddl)
        except psycopg.Error as e:
            raise PersistenceError(f"Schema initialisation failed: {e}") from e
        logger.info(f"Database schema {self.schema} initialized")

    def entity_stores(self) -> dict[str, "PostgresEntityStore"]:
        return {name: PostgresEntityStore(self, kind) for name, kind in ENTITY_KINDS.items()}

    def cursor_store(self) -> "PostgresCursorStore":
        return PostgresCursorStore(self)


class PostgresEntityStore(EntityStore):
    """One master table, keyed by (tenant_id, external_id)."""

    def __init__(self, database: PostgresDatabase, kind: EntityKind | str):
        super().__init__(kind)
        self.database = database
        self.table = f"{database.schema}.{self.kind.table}"

    def _row_to_record(self, row: dict) -> MasterRecord:
        return MasterRecord(
            id=row["id"],
            tenant_id=row["tenant_id"],
            external_id=row["external_id"],
            revision=row["revision"] or 0,
            external_guid=row["external_guid"],
            name=row["name"],
            user_id=row["user_id"],
            attributes={name: row.get(name) for name in self.kind.field_names},
            is_active=row["is_active"],
            is_deleted=row["is_deleted"],
            last_sync_time=row["last_sync_time"],
            entity_kind=self.kind.name,
        )

    def _values(self, record: MasterRecord) -> dict:
        values = {column: getattr(record, column) for column in COMMON_COLUMNS}
        for name in self.kind.field_names:
            values[name] = record.attributes.get(name)
        return values

    def _fail(self, action: str, record: MasterRecord, e: Exception) -> PersistenceError:
        logger.error(f"Failed to {action} {self.kind.name} {record.external_id}: {e}")
        return PersistenceError(
            f"Failed to {action} {self.kind.name}: {e}",
            entity_kind=self.kind.name,
            tenant_id=record.tenant_id,
            external_id=record.external_id,
        )

    def find_by_tenant_and_external_id(
        self, tenant_id: str, external_id: int
    ) -> Optional[MasterRecord]:
        try:
            with self.database.conn.cursor() as cur:
                cur.execute(
                    f"SELECT * FROM {self.table} WHERE tenant_id = %s AND external_id = %s",
                    (tenant_id, external_id),
                )
                row = cur.fetchone()
        except psycopg.Error as e:
            raise PersistenceError(
                f"Lookup failed: {e}",
                entity_kind=self.kind.name,
                tenant_id=tenant_id,
                external_id=external_id,
            ) from e
        return self._row_to_record(row) if row else None

    def find_by_tenant_and_guid(self, tenant_id: str, guid: str) -> Optional[MasterRecord]:
        if not guid:
            return None
        try:
            with self.database.conn.cursor() as cur:
                cur.execute(
                    f"SELECT * FROM {self.table} WHERE tenant_id = %s AND external_guid = %s "
                    "ORDER BY id LIMIT 1",
                    (tenant_id, guid),
                )
                row = cur.fetchone()
        except psycopg.Error as e:
            raise PersistenceError(
                f"GUID lookup failed: {e}", entity_kind=self.kind.name, tenant_id=tenant_id
            ) from e
        return self._row_to_record(row) if row else None

    def save(self, record: MasterRecord) -> MasterRecord:
        if record.id is None:
            return self._insert(record)
        return self._update(record)

    def _insert(self, record: MasterRecord) -> MasterRecord:
        values = self._values(record)
        values["tenant_id"] = record.tenant_id
        values["external_id"] = record.external_id

        columns = list(values.keys())
        columns_str = ", ".join(columns)
        placeholders = ", ".join([f"%({c})s" for c in columns])
        sql = f"INSERT INTO {self.table} ({columns_str}) VALUES ({placeholders}) RETURNING *"

        try:
            with transaction(self.database.conn):
                with self.database.conn.cursor() as cur:
                    cur.execute(sql, values)
                    row = cur.fetchone()
        except pg_errors.UniqueViolation as e:
            raise ConflictError(
                f"Duplicate {self.kind.name} insert",
                entity_kind=self.kind.name,
                tenant_id=record.tenant_id,
                external_id=record.external_id,
            ) from e
        except psycopg.Error as e:
            raise self._fail("insert", record, e) from e
        return self._row_to_record(row)

    def _update(self, record: MasterRecord) -> MasterRecord:
        # tenant_id and external_id are never updated
        values = self._values(record)
        update_str = ", ".join([f"{c} = %({c})s" for c in values])
        values["id"] = record.id
        sql = f"""
            UPDATE {self.table}
            SET {update_str}, updated_at = NOW()
            WHERE id = %(id)s
            RETURNING *
        """

        try:
            with transaction(self.database.conn):
                with self.database.conn.cursor() as cur:
                    cur.execute(sql, values)
                    row = cur.fetchone()
        except psycopg.Error as e:
            raise self._fail("update", record, e) from e
        if row is None:
            raise PersistenceError(
                f"No {self.kind.name} row with id {record.id}",
                entity_kind=self.kind.name,
                tenant_id=record.tenant_id,
                external_id=record.external_id,
            )
        return self._row_to_record(row)

    def max_revision(self, tenant_id: str) -> int:
        try:
            with self.database.conn.cursor() as cur:
                cur.execute(
                    f"SELECT COALESCE(MAX(revision), 0) AS max_id FROM {self.table} WHERE tenant_id = %s",
                    (tenant_id,),
                )
                result = cur.fetchone()
        except psycopg.Error as e:
            raise PersistenceError(
                f"Max revision query failed: {e}", entity_kind=self.kind.name, tenant_id=tenant_id
            ) from e
        return int(result["max_id"]) if result else 0

    def count(self, tenant_id: Optional[str] = None) -> int:
        sql = f"SELECT COUNT(*) AS cnt FROM {self.table}"
        params: tuple = ()
        if tenant_id is not None:
            sql += " WHERE tenant_id = %s"
            params = (tenant_id,)
        try:
            with self.database.conn.cursor() as cur:
                cur.execute(sql, params)
                result = cur.fetchone()
        except psycopg.Error as e:
            raise PersistenceError(
                f"Count query failed: {e}", entity_kind=self.kind.name, tenant_id=tenant_id
            ) from e
        return result["cnt"] if result else 0

    def list_by_tenant(self, tenant_id: str, active_only: bool = False) -> list[MasterRecord]:
        sql = f"SELECT * FROM {self.table} WHERE tenant_id = %s"
        if active_only:
            sql += " AND is_active AND NOT is_deleted"
        sql += " ORDER BY external_id"
        try:
            with self.database.conn.cursor() as cur:
                cur.execute(sql, (tenant_id,))
                rows = cur.fetchall()
        except psycopg.Error as e:
            raise PersistenceError(
                f"List query failed: {e}", entity_kind=self.kind.name, tenant_id=tenant_id
            ) from e
        return [self._row_to_record(row) for row in rows]


class PostgresCursorStore(CursorStore):
    """The sync_cursor table, one row per tenant."""

    def __init__(self, database: PostgresDatabase):
        self.database = database
        self.table = f"{database.schema}.sync_cursor"

    def get(self, tenant_id: str) -> Optional[SyncCursor]:
        try:
            with self.database.conn.cursor() as cur:
                cur.execute(
                    f"""
                    SELECT tenant_id, last_acknowledged_revision, entity_kind, last_sync_time
                    FROM {self.table}
                    WHERE tenant_id = %s
                    """,
                    (tenant_id,),
                )
                row = cur.fetchone()
        except psycopg.Error as e:
            raise PersistenceError(f"Cursor lookup failed: {e}", tenant_id=tenant_id) from e
        return SyncCursor(**row) if row else None

    def save(self, cursor: SyncCursor) -> SyncCursor:
        try:
            with self.database.conn.cursor() as cur:
                cur.execute(
                    f"""
                    INSERT INTO {self.table}
                        (tenant_id, last_acknowledged_revision, entity_kind, last_sync_time)
                    VALUES (%s, %s, %s, COALESCE(%s::timestamptz, NOW()))
                    ON CONFLICT (tenant_id) DO UPDATE SET
                        last_acknowledged_revision = EXCLUDED.last_acknowledged_revision,
                        entity_kind = EXCLUDED.entity_kind,
                        last_sync_time = EXCLUDED.last_sync_time,
                        updated_at = NOW()
                    RETURNING tenant_id, last_acknowledged_revision, entity_kind, last_sync_time
                    """,
                    (
                        cursor.tenant_id,
                        cursor.last_acknowledged_revision,
                        cursor.entity_kind,
                        cursor.last_sync_time,
                    ),
                )
                row = cur.fetchone()
        except psycopg.Error as e:
            raise PersistenceError(f"Cursor update failed: {e}", tenant_id=cursor.tenant_id) from e
        return SyncCursor(**row)
