"""
Error mapping of the PostgreSQL stores, without a database.
"""
from unittest.mock import Mock
import psycopg
import pytest
from tally_mirror.errors import PersistenceError
from tally_mirror.stores import PostgresEntityStore


@pytest.fixture
def failing_store():
    database = Mock(schema="tally_mirror")
    database.conn.cursor.side_effect = psycopg.OperationalError("server closed the connection")
    return PostgresEntityStore(database, "ledger")


class TestPostgresErrorMapping:

    def test_count_failure(self, failing_store):
        with pytest.raises(PersistenceError) as exc_info:
            failing_store.count("T1")
        assert exc_info.value.entity_kind == "ledger"

    def test_list_failure(self, failing_store):
        with pytest.raises(PersistenceError):
            failing_store.list_by_tenant("T1", active_only=True)

    def test_guid_lookup_failure(self, failing_store):
        with pytest.raises(PersistenceError):
            failing_store.find_by_tenant_and_guid("T1", "guid-1")

    def test_max_revision_failure(self, failing_store):
        with pytest.raises(PersistenceError):
            failing_store.max_revision("T1")
