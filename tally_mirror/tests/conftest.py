"""
Shared fixtures for mirror tests.

Behaviour tests run against the in-memory stores; the integration tests in
test_postgres.py need a PostgreSQL URL in TALLY_MIRROR_TEST_DB_URL.
"""
import sys
from datetime import datetime
import pytest
from loguru import logger
from tally_mirror.config import MirrorConfig
from tally_mirror.entities import ENTITY_KINDS, get_entity_kind
from tally_mirror.reconciler import Reconciler
from tally_mirror.stores import build_memory_stores
from tally_mirror.sync import MasterSync

SAMPLE_VALUES = {
    "TEXT": "Sample",
    "BOOLEAN": True,
    "DOUBLE PRECISION": 1250.5,
    "INTEGER": 2,
    "DATE": "20240401",
}


@pytest.fixture
def config():
    """In-memory config with the default last-write-wins policy."""
    return MirrorConfig(backend="memory", conflict_retry_attempts=3, skip_stale_revisions=False)


@pytest.fixture
def stores():
    """Fresh in-memory entity stores and cursor store."""
    return build_memory_stores()


@pytest.fixture
def clock():
    """Deterministic clock that ticks one second per call."""
    ticks = iter(datetime(2024, 4, 1, 10, 0, second) for second in range(60))
    return lambda: next(ticks)


@pytest.fixture
def reconciler(stores, config, clock):
    entity_stores, _ = stores
    return Reconciler(entity_stores, config, clock=clock)


@pytest.fixture
def sync(stores, config):
    entity_stores, cursor_store = stores
    return MasterSync(config, entity_stores=entity_stores, cursor_store=cursor_store)


@pytest.fixture
def make_payload():
    """
    Build a client payload for any kind.

    Every kind-specific field gets a sample value of its column type.
    """

    def _make(kind="ledger", tenant="T1", master_id=5, alter_id=10, name="Cash", **extra):
        kind = get_entity_kind(kind)
        payload = {
            "cmpId": tenant,
            "masterId": master_id,
            "alterId": alter_id,
            "guid": f"guid-{tenant}-{master_id}",
            "name": name,
        }
        for spec in kind.fields:
            payload[spec.name] = SAMPLE_VALUES[spec.sql_type]
        payload.update(extra)
        return payload

    return _make


@pytest.fixture(params=sorted(ENTITY_KINDS))
def kind_name(request):
    """Each of the twelve entity kinds in turn."""
    return request.param


@pytest.fixture(autouse=True)
def _restore_logger():
    """The CLI replaces loguru sinks; put a plain stderr sink back afterwards."""
    yield
    logger.remove()
    logger.add(sys.stderr, level="DEBUG")
